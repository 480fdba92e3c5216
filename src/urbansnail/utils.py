import re
from datetime import datetime
from pathlib import Path


def sanitize_filename(name: str) -> str:
    """Sanitize a string for use in filenames."""
    # Replace problematic characters with underscores
    name = re.sub(r"[%/\\:*?\"<>|() ]", "_", str(name))
    # Replace multiple underscores with single
    name = re.sub(r"_+", "_", name)
    # Remove leading/trailing underscores
    name = name.strip("_")
    return name.lower()


def create_output_dir_path(output_path: Path, prefix: str = "run") -> Path:
    """
    Create a timestamped output directory under output_path.

    Parameters
    ----------
    output_path : Path
        Parent directory
    prefix : str
        Directory name prefix

    Returns
    -------
    Path
        The created directory
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir_path = Path(output_path) / f"{prefix}_{timestamp}"
    output_dir_path.mkdir(parents=True, exist_ok=True)
    return output_dir_path
