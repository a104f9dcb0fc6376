import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file if it exists
load_dotenv()

# Paths
PROJ_ROOT = Path(__file__).resolve().parents[1]
logger.info(f"PROJ_ROOT path is: {PROJ_ROOT}")

DATA_DIR = Path(os.getenv("SVS_DATA_DIR", PROJ_ROOT / "data"))
RAW_DATA_DIR = DATA_DIR / "raw"
INTERIM_DATA_DIR = DATA_DIR / "interim"
PROCESSED_DATA_DIR = DATA_DIR / "processed"
EXTERNAL_DATA_DIR = DATA_DIR / "external"

MODELS_DIR = PROJ_ROOT / "models"

REPORTS_DIR = PROJ_ROOT / "reports"
FIGURES_DIR = REPORTS_DIR / "figures"

COUNTY_RAW_DIR = RAW_DATA_DIR / "counties"
COUNTY_RETURNS_CSV = COUNTY_RAW_DIR / "countypres_2000-2024.csv"
EDUCATION_CSV = COUNTY_RAW_DIR / "Education2023.csv"
UNEMPLOYMENT_CSV = COUNTY_RAW_DIR / "Unemployment2023.csv"

PRECINCT_RAW_DIR = RAW_DATA_DIR / "precincts"
PRECINCT_EXPORT_DIR = INTERIM_DATA_DIR / "precincts"

# Embedding service output lands here (one CSV per level/year)
EMBEDDINGS_DIR = EXTERNAL_DATA_DIR / "embeddings"

CLEAN_COUNTY_VOTES = INTERIM_DATA_DIR / "clean_county_votes_00-24.csv"
CLEAN_EDUCATION = INTERIM_DATA_DIR / "clean_education.csv"
CLEAN_EMPLOYMENT = INTERIM_DATA_DIR / "clean_employment.csv"

WAREHOUSE_DB = PROCESSED_DATA_DIR / "warehouse.duckdb"

# Canonical identifiers
ID_FIELD = "precinctID"
PRECINCT_KEY = "precinct_id"
COUNTY_KEY = "county_fips"
FIPS_WIDTH = 5

# Legacy DBF limit of the shapefile attribute table
FIELD_NAME_LIMIT = 10

# Units below this many votes are dropped before joining
MIN_TOTAL_VOTES = 7

# Equal-area CRS for area_m2 (CONUS Albers)
AREA_CRS = "EPSG:5070"

TOTAL_MODES = ("TOTAL", "TOTAL VOTES")

RANDOM_SEED = int(os.getenv("SVS_SEED", "2020"))

TARGET = "rep_share"

# If tqdm is installed, configure loguru with tqdm.write
# https://github.com/Delgan/loguru/issues/135
try:
    from tqdm import tqdm

    logger.remove(0)
    logger.add(lambda msg: tqdm.write(msg, end=""), colorize=True)
except (ModuleNotFoundError, ValueError):
    pass
