# pycoupler/grid.py

"""
Defines the shared boundary space: a regular cell-centred latitude-longitude
grid on which every coupler field lives.
"""

import numpy as np
from . import constants


class BoundarySpace:
    """
    Represents the horizontal grid shared by the coupler and all component models.
    """
    def __init__(self, n_lat, n_lon, radius=constants.PLANET_RADIUS, dtype=np.float64):
        """
        Initializes a grid with a specified resolution.

        Args:
            n_lat (int): Number of latitude cells.
            n_lon (int): Number of longitude cells.
            radius (float): Planet radius (m), used for cell areas.
            dtype: Floating point type of fields allocated on this space.
        """
        if int(n_lat) < 1 or int(n_lon) < 1:
            raise ValueError(f"BoundarySpace needs at least one cell, got {n_lat}x{n_lon}")
        self.n_lat = int(n_lat)
        self.n_lon = int(n_lon)
        self.radius = float(radius)
        self.dtype = np.dtype(dtype)

        # Cell centres: latitude strictly inside (-90, 90), longitude in [0, 360)
        self.dlat = 180.0 / self.n_lat
        self.dlon = 360.0 / self.n_lon
        self.lat = -90.0 + self.dlat * (np.arange(self.n_lat) + 0.5)
        self.lon = self.dlon * np.arange(self.n_lon)

        # Create a 2D meshgrid for calculations
        self.lon_mesh, self.lat_mesh = np.meshgrid(self.lon, self.lat)

        self.cell_area = self._calculate_cell_area()

    @property
    def shape(self):
        return (self.n_lat, self.n_lon)

    @property
    def size(self):
        return self.n_lat * self.n_lon

    def zeros(self):
        return np.zeros(self.shape, dtype=self.dtype)

    def ones(self):
        return np.ones(self.shape, dtype=self.dtype)

    def full(self, value):
        return np.full(self.shape, value, dtype=self.dtype)

    def columns(self):
        """Iterate over the (j, i) index of every column of the space."""
        return np.ndindex(*self.shape)

    def _calculate_cell_area(self):
        """
        Area of each cell (m^2):
            A = R^2 * dlon * (sin(phi + dphi/2) - sin(phi - dphi/2))
        The areas sum to the sphere's surface 4*pi*R^2.
        """
        phi = np.deg2rad(self.lat_mesh)
        half = 0.5 * np.deg2rad(self.dlat)
        dlon = np.deg2rad(self.dlon)
        area = self.radius ** 2 * dlon * (np.sin(phi + half) - np.sin(phi - half))
        return area.astype(np.float64)


if __name__ == '__main__':
    space = BoundarySpace(n_lat=18, n_lon=36)
    print(f"Boundary space with {space.n_lat} latitude and {space.n_lon} longitude cells.")
    print("Latitude centres:", space.lat)
    print("Total area / (4 pi R^2):", space.cell_area.sum() / (4 * np.pi * space.radius ** 2))
