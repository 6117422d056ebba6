"""Map projection helpers for the ANOMPLOT dashboard (no drawing)."""

from typing import Optional, Tuple

import numpy as np
import pyproj

from config import USE_SPHERICAL_EARTH, CONUS_BOUNDS


def _map_crs():
    """Return (crs, forward_transformer, inverse_transformer) for the US map.

    Albers equal-area conic with the standard CONUS parallels 29.5/45.5 and
    centre 23N, 96W. Honors USE_SPHERICAL_EARTH. Falls back to WGS84 with
    identity transformers if PROJ cannot build the projection.
    """
    try:
        a_b = "+a=6370000.0 +b=6370000.0" if USE_SPHERICAL_EARTH else "+ellps=GRS80 +towgs84=0,0,0"
        proj4 = (
            f"+proj=aea +lat_1=29.5 +lat_2=45.5 +lat_0=23 +lon_0=-96 {a_b} +x_0=0 +y_0=0 +units=m +no_defs"
        )
        crs = pyproj.CRS.from_proj4(proj4)
        tf_fwd = pyproj.Transformer.from_crs(pyproj.CRS.from_epsg(4326), crs, always_xy=True)
        tf_inv = pyproj.Transformer.from_crs(crs, pyproj.CRS.from_epsg(4326), always_xy=True)
        return crs, tf_fwd, tf_inv
    except pyproj.exceptions.CRSError:
        c = pyproj.CRS.from_epsg(4326)
        tf = pyproj.Transformer.from_crs(c, c, always_xy=True)
        return c, tf, tf


def project_lonlat(tf: pyproj.Transformer, lon, lat) -> Tuple[np.ndarray, np.ndarray]:
    """Transform lon/lat arrays; points that cannot be projected come back as NaN."""
    lon = np.asarray(lon, dtype=float)
    lat = np.asarray(lat, dtype=float)
    x, y = tf.transform(lon, lat)
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    bad = ~(np.isfinite(x) & np.isfinite(y)) | (np.abs(x) > 1e10) | (np.abs(y) > 1e10)
    x = np.where(bad, np.nan, x)
    y = np.where(bad, np.nan, y)
    return x, y


def unproject_xy(tf_inv: pyproj.Transformer, x: float, y: float) -> Optional[Tuple[float, float]]:
    """Inverse-project one map position; None when it has no geographic location."""
    if x is None or y is None:
        return None
    lon, lat = tf_inv.transform(float(x), float(y))
    if not (np.isfinite(lon) and np.isfinite(lat)) or abs(lon) > 180 or abs(lat) > 90:
        return None
    return float(lon), float(lat)


def map_extent(tf_fwd: pyproj.Transformer, bounds=CONUS_BOUNDS, pad: float = 0.02):
    """Projected (xlim, ylim) enclosing a lon/lat box, sampled along its edges."""
    lon0, lat0, lon1, lat1 = bounds
    lons = np.concatenate([np.linspace(lon0, lon1, 50), np.full(50, lon1),
                           np.linspace(lon1, lon0, 50), np.full(50, lon0)])
    lats = np.concatenate([np.full(50, lat0), np.linspace(lat0, lat1, 50),
                           np.full(50, lat1), np.linspace(lat1, lat0, 50)])
    xs, ys = project_lonlat(tf_fwd, lons, lats)
    xmin, xmax = np.nanmin(xs), np.nanmax(xs)
    ymin, ymax = np.nanmin(ys), np.nanmax(ys)
    dx = (xmax - xmin) * pad
    dy = (ymax - ymin) * pad
    return (xmin - dx, xmax + dx), (ymin - dy, ymax + dy)
