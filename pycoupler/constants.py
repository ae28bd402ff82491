# pycoupler/constants.py

"""
Central repository for the physical constants and reference parameters
shared by the coupler and the bundled component models.
"""

# --- Physical Constants (SI units) ---
SIGMA = 5.670374e-8  # Stefan-Boltzmann constant (W m^-2 K^-4)
GRAV = 9.81  # Gravitational acceleration (m s^-2)
KARMAN = 0.4  # von Karman constant

# --- Planet ---
PLANET_RADIUS = 6.371e6  # Planet radius (m)
SOLAR_CONSTANT = 1361.0  # Total solar irradiance at 1 AU (W m^-2)
DAY_SECONDS = 86400.0  # Length of a solar day (s)
YEAR_DAYS = 365.0  # Days per (calendar) year, used for solar declination
AXIAL_TILT = 23.44  # Obliquity (degrees)

# --- Dry air / water thermodynamics ---
R_D = 287.0  # Gas constant of dry air (J kg^-1 K^-1)
CP_D = 1004.0  # Isobaric specific heat of dry air (J kg^-1 K^-1)
CV_D = CP_D - R_D  # Isochoric specific heat of dry air (J kg^-1 K^-1)
LV = 2.5e6  # Latent heat of vaporization (J kg^-1)
LF = 3.34e5  # Latent heat of fusion (J kg^-1)
T_FREEZE = 273.15  # Freezing point of fresh water (K)
P_REF = 1.0e5  # Reference surface pressure (Pa)

# --- Water / ice ---
RHO_SEAWATER = 1025.0  # Sea water density (kg m^-3)
CP_SEAWATER = 4000.0  # Sea water specific heat (J kg^-1 K^-1)
RHO_ICE = 900.0  # Sea ice density (kg m^-3)
CP_ICE = 2100.0  # Sea ice specific heat (J kg^-1 K^-1)
K_ICE = 2.0  # Sea ice thermal conductivity (W m^-1 K^-1)
T_FREEZE_SEAWATER = 271.2  # Freezing point of sea water (K)

# --- Coupler ---
FRACTION_EPS = 1e-8  # Area fractions at or below this are treated as empty
FRACTION_SUM_TOL = 1e-6  # Allowed deviation of summed area fractions from 1
