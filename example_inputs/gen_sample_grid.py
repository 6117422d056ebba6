import os

import netCDF4 as nc
import numpy as np
import pandas as pd


def _anomaly_fields(years, lats, lons):
    """Warming trend plus a west/east precipitation dipole, on a (year, lat, lon) grid."""
    yy, la, lo = np.meshgrid(years, lats, lons, indexing='ij')
    # lon is stored 0..360 like the CMIP source grids
    lon180 = np.where(lo > 180, lo - 360, lo)
    t = (yy - years[0]) / max(1, years[-1] - years[0])
    tas = (-0.3 + 3.5 * t ** 2 + 0.02 * (la - 37.0)).astype('f4')
    pr = (40.0 * np.sin(np.radians(lon180 + 96.0) * 4.0) * (0.5 + t) - 10.0 * t).astype('f4')
    return tas, pr


def generate_example_grid_ncf(output_path, years=None, lats=None, lons=None):
    years = np.asarray(years if years is not None else np.arange(1995, 2061, 5), dtype='i4')
    lats = np.asarray(lats if lats is not None else np.arange(25.0, 50.0, 2.5), dtype='f4')
    lons = np.asarray(lons if lons is not None else np.arange(236.0, 294.0, 2.5), dtype='f4')

    if os.path.exists(output_path):
        os.remove(output_path)

    tas, pr = _anomaly_fields(years, lats, lons)
    with nc.Dataset(output_path, 'w', format='NETCDF4_CLASSIC') as ds:
        ds.createDimension('year', len(years))
        ds.createDimension('lat', len(lats))
        ds.createDimension('lon', len(lons))

        yvar = ds.createVariable('year', 'i4', ('year',))
        yvar.long_name = 'calendar year'
        latvar = ds.createVariable('lat', 'f4', ('lat',))
        latvar.units = 'degrees_north'
        lonvar = ds.createVariable('lon', 'f4', ('lon',))
        lonvar.units = 'degrees_east'

        tvar = ds.createVariable('tas_anom', 'f4', ('year', 'lat', 'lon'), fill_value=np.float32(1e20))
        tvar.units = 'K'
        tvar.long_name = 'Near-surface air temperature anomaly'
        pvar = ds.createVariable('pr_anom', 'f4', ('year', 'lat', 'lon'), fill_value=np.float32(1e20))
        pvar.units = 'mm/yr'
        pvar.long_name = 'Precipitation anomaly'

        ds.title = 'Synthetic CMIP-style US anomaly grid'
        ds.baseline = '1995-2014'

        yvar[:] = years
        latvar[:] = lats
        lonvar[:] = lons
        tvar[:] = tas
        pvar[:] = pr

    print(f"Generated {output_path}")
    return output_path


def generate_example_grid_csv(output_path, years=None, lats=None, lons=None):
    years = np.asarray(years if years is not None else np.arange(1995, 2061, 5), dtype=int)
    lats = np.asarray(lats if lats is not None else np.arange(25.0, 50.0, 2.5), dtype=float)
    lons = np.asarray(lons if lons is not None else np.arange(236.0, 294.0, 2.5), dtype=float)

    tas, pr = _anomaly_fields(years, lats, lons)
    yy, la, lo = np.meshgrid(years, lats, lons, indexing='ij')
    frames = []
    for code, data in (('tas', tas), ('pr', pr)):
        frames.append(pd.DataFrame({
            'year': yy.ravel(),
            'scenario': np.where(yy.ravel() <= 2014, 'historical', 'ssp585'),
            'variable': code,
            'lon': lo.ravel(),
            'lat': la.ravel(),
            'anom': np.round(data.ravel().astype(float), 4),
        }))
    pd.concat(frames, ignore_index=True).to_csv(output_path, index=False)
    print(f"Generated {output_path}")
    return output_path


if __name__ == "__main__":
    here = os.path.dirname(os.path.abspath(__file__))
    generate_example_grid_ncf(os.path.join(here, 'example_grid_anom.nc'))
    generate_example_grid_csv(os.path.join(here, 'example_grid_anom.csv'))
