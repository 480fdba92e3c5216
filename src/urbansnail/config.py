# general
import os
import subprocess
from pathlib import Path


def get_repo_root() -> Path:
    # Explicit override first, e.g. when running from an installed package
    env_root = os.environ.get("URBANSNAIL_ROOT")
    if env_root:
        return Path(env_root).resolve()

    # Get the directory where this file is located
    file_dir = Path(__file__).parent.resolve()

    # Run 'git rev-parse --show-toplevel' from the file's directory
    # to get the root directory of the Git repository containing this file
    try:
        git_root = subprocess.run(
            ["git", "-C", str(file_dir), "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        # git not installed
        return Path.cwd()
    if git_root.returncode == 0:
        return Path(git_root.stdout.strip())
    return Path.cwd()


"""
Defines globals used throughout the codebase.
"""

###############################################################################
# Folder structure naming system
###############################################################################

# REPO DIRECTORIES
repo_dir = get_repo_root()
data_dir = repo_dir / "data"

# DATA FILES
site_data_path = data_dir / "sites.csv"
snail_data_path = data_dir / "snails.csv"
colour_data_path = data_dir / "colour.csv"

# METADATA DIRECTORIES
figures_dir = repo_dir / "figures"
models_dir = repo_dir / "models"


###############################################################################
# Colour calibration
###############################################################################

# channel order is the order predictions are averaged in
CHANNELS = ("R", "G", "B")

# reflectance is on a 0-100 percentage scale, pixels on 0-255
START_A = 5.0
START_B = 0.01
MAX_ITERATIONS = 50

# region label of the shell measurement in each photo; every other region
# with a reference reflectance is a grey-standard cell
SPECIMEN_REGION = "shell"

# long-format colour table, one row per photo, region and channel
REQUIRED_COLOUR_COLUMNS = [
    "photo",
    "region",
    "channel",
    "mean_pixel",
    "reference_reflectance",
]


###############################################################################
# Spatial
###############################################################################

SITE_CRS = "EPSG:4326"
PROJECTED_CRS = "EPSG:6933"  # equal-area, metres


###############################################################################
# Responses modelled against urbanization
###############################################################################

# response column -> likelihood family
RESPONSES = {
    "shell_diameter": "gaussian",
    "reflectance": "gaussian",
    "parasite": "bernoulli",
    "log_speed": "gaussian",
    "food_proportion": "beta",
}

URBANIZATION_COLUMN = "urbanization"


if __name__ == "__main__":
    print(repo_dir)
