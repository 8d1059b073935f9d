"""
VTK Writer for Mesh Coverage Buffers

Writes the flat coordinate/index buffers generated from a coverage as a
VTK Unstructured Grid, legacy ASCII (.vtk) or XML (.vtu).
"""

import logging
import os
from typing import Optional

import numpy as np

from dcel import MeshCoverage

logger = logging.getLogger(__name__)


class VTKWriter:
    """Write line or triangle buffers to VTK format"""

    # VTK cell type IDs
    VTK_LINE = 3
    VTK_TRIANGLE = 5

    CELL_SIZES = {VTK_LINE: 2, VTK_TRIANGLE: 3}

    def __init__(self):
        self.points = np.zeros((0, 3), dtype=np.float64)
        self.cells = np.zeros((0, 2), dtype=np.int64)
        self.cell_type = self.VTK_LINE
        self.point_data = {}

    def set_points(self, coordinates: np.ndarray):
        """
        Set grid points

        Args:
            coordinates: flat (x, y, z, x, y, z, ...) or Nx3 array
        """
        self.points = np.asarray(coordinates, dtype=np.float64).reshape(-1, 3)

    def set_cells(self, indices: np.ndarray, cell_type: int = VTK_LINE):
        """
        Set grid cells from a flat index buffer

        Args:
            indices: point positions, 2 per line or 3 per triangle
            cell_type: VTK_LINE or VTK_TRIANGLE
        """
        if cell_type not in self.CELL_SIZES:
            raise ValueError(f"Unsupported VTK cell type {cell_type}")
        size = self.CELL_SIZES[cell_type]
        indices = np.asarray(indices, dtype=np.int64)
        if len(indices) % size:
            raise ValueError(f"Index buffer length {len(indices)} is not a multiple of {size}")
        self.cells = indices.reshape(-1, size)
        self.cell_type = cell_type

    def add_point_data(self, name: str, data: np.ndarray):
        """Add a scalar field with one value per point"""
        if len(data) != len(self.points):
            raise ValueError(f"Point data length {len(data)} doesn't match number of points {len(self.points)}")
        self.point_data[name] = np.asarray(data)

    def write_vtk_legacy(self, filename: str, title: str = "Mesh Coverage"):
        """Write legacy VTK ASCII format (.vtk)"""
        n_points = len(self.points)
        n_cells = len(self.cells)
        size = self.CELL_SIZES[self.cell_type]

        with open(filename, 'w') as f:
            f.write("# vtk DataFile Version 3.0\n")
            f.write(f"{title}\n")
            f.write("ASCII\n")
            f.write("DATASET UNSTRUCTURED_GRID\n")

            f.write(f"POINTS {n_points} double\n")
            for p in self.points:
                f.write(f"{p[0]:.10e} {p[1]:.10e} {p[2]:.10e}\n")

            f.write(f"\nCELLS {n_cells} {n_cells * (size + 1)}\n")
            for cell in self.cells:
                f.write(f"{size} " + " ".join(str(idx) for idx in cell) + "\n")

            f.write(f"\nCELL_TYPES {n_cells}\n")
            for _ in range(n_cells):
                f.write(f"{self.cell_type}\n")

            if self.point_data:
                f.write(f"\nPOINT_DATA {n_points}\n")
                for name, data in self.point_data.items():
                    f.write(f"SCALARS {name} {self._legacy_type(data)}\n")
                    f.write("LOOKUP_TABLE default\n")
                    for value in data:
                        f.write(f"{value}\n")

    def write_vtu_xml(self, filename: str):
        """Write VTK XML format (.vtu), ASCII encoded"""
        n_points = len(self.points)
        n_cells = len(self.cells)
        size = self.CELL_SIZES[self.cell_type]

        with open(filename, 'w') as f:
            f.write('<?xml version="1.0"?>\n')
            f.write('<VTKFile type="UnstructuredGrid" version="1.0" byte_order="LittleEndian">\n')
            f.write('  <UnstructuredGrid>\n')
            f.write(f'    <Piece NumberOfPoints="{n_points}" NumberOfCells="{n_cells}">\n')

            f.write('      <Points>\n')
            f.write('        <DataArray type="Float64" NumberOfComponents="3" format="ascii">\n')
            for p in self.points:
                f.write(f'          {p[0]:.10e} {p[1]:.10e} {p[2]:.10e}\n')
            f.write('        </DataArray>\n')
            f.write('      </Points>\n')

            f.write('      <Cells>\n')
            f.write('        <DataArray type="Int64" Name="connectivity" format="ascii">\n')
            f.write('          ' + ' '.join(str(idx) for idx in self.cells.ravel()) + '\n')
            f.write('        </DataArray>\n')
            f.write('        <DataArray type="Int64" Name="offsets" format="ascii">\n')
            f.write('          ' + ' '.join(str(size * (i + 1)) for i in range(n_cells)) + '\n')
            f.write('        </DataArray>\n')
            f.write('        <DataArray type="UInt8" Name="types" format="ascii">\n')
            f.write('          ' + ' '.join(str(self.cell_type) for _ in range(n_cells)) + '\n')
            f.write('        </DataArray>\n')
            f.write('      </Cells>\n')

            if self.point_data:
                f.write('      <PointData>\n')
                for name, data in self.point_data.items():
                    f.write(f'        <DataArray type="{self._xml_type(data)}" Name="{name}" format="ascii">\n')
                    f.write('          ' + ' '.join(str(v) for v in data) + '\n')
                    f.write('        </DataArray>\n')
                f.write('      </PointData>\n')

            f.write('    </Piece>\n')
            f.write('  </UnstructuredGrid>\n')
            f.write('</VTKFile>\n')

    @staticmethod
    def _legacy_type(data: np.ndarray) -> str:
        return 'unsigned_int' if np.issubdtype(data.dtype, np.integer) else 'double'

    @staticmethod
    def _xml_type(data: np.ndarray) -> str:
        return 'UInt32' if np.issubdtype(data.dtype, np.integer) else 'Float64'


def write_coverage_vtk(coverage: MeshCoverage, filename: str,
                       kind: str = 'lines', format: Optional[str] = None):
    """
    Export a coverage's render buffer to VTK

    Args:
        coverage: the coverage to export
        filename: output file (.vtk or .vtu)
        kind: 'lines' (wireframe) or 'triangles'
        format: 'legacy' or 'xml'; inferred from the extension if None
    """
    if format is None:
        format = 'legacy' if os.path.splitext(filename)[1].lower() == '.vtk' else 'xml'
    if format not in ('legacy', 'xml'):
        raise ValueError(f"Unknown VTK format: {format}")

    coordinates, indices = coverage.generate_buffer(kind)
    node_ids = np.fromiter(coverage.node_map.keys(), dtype=np.uint32, count=coverage.n_nodes)

    writer = VTKWriter()
    writer.set_points(coordinates)
    writer.set_cells(indices, VTKWriter.VTK_LINE if kind == 'lines' else VTKWriter.VTK_TRIANGLE)
    writer.add_point_data('node_id', node_ids)

    if format == 'xml':
        writer.write_vtu_xml(filename)
    else:
        writer.write_vtk_legacy(filename, title=f"Mesh Coverage {coverage.name}")

    logger.info(f"Wrote {filename} ({len(writer.cells)} cells)")
