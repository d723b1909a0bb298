"""
I/O utilities for configurations, label images and probability images.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import nibabel as nib
import numpy as np
import yaml


NIFTI_EXTENSIONS = (".nii", ".nii.gz")


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config or {}


def save_config(config: Dict[str, Any], save_path: Union[str, Path]) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration dictionary
        save_path: Path to save YAML file
    """
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    # Remove internal keys
    config_to_save = {k: v for k, v in config.items() if not k.startswith("_")}

    with open(save_path, "w", encoding="utf-8") as f:
        yaml.dump(config_to_save, f, default_flow_style=False, allow_unicode=True)


def load_label_image(
    file_path: Union[str, Path],
    return_header: bool = False,
) -> Union[np.ndarray, Tuple[np.ndarray, nib.Nifti1Header, np.ndarray]]:
    """
    Load a NIfTI segmentation as an integer array.

    Args:
        file_path: Path to NIfTI file (.nii or .nii.gz)
        return_header: Whether to return header and affine

    Returns:
        Label array, optionally with header and affine
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"NIfTI file not found: {file_path}")

    nii = nib.load(str(file_path))
    # Integer on-disk types are read without scaling to float
    data = np.asanyarray(nii.dataobj)
    if not np.issubdtype(data.dtype, np.integer):
        data = np.rint(nii.get_fdata()).astype(np.int64)

    if return_header:
        return data, nii.header, nii.affine
    return data


def load_mask_image(file_path: Union[str, Path]) -> np.ndarray:
    """Load a NIfTI mask as a boolean array (non-zero = inside)."""
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Mask file not found: {file_path}")

    return np.asanyarray(nib.load(str(file_path)).dataobj) != 0


def save_label_image(
    data: np.ndarray,
    save_path: Union[str, Path],
    affine: Optional[np.ndarray] = None,
    header: Optional[nib.Nifti1Header] = None,
) -> None:
    """
    Save a label array as NIfTI, keeping its integer dtype.

    Args:
        data: Label array
        save_path: Path to save NIfTI file
        affine: Affine transformation matrix (default: identity)
        header: Reference NIfTI header (optional)
    """
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    if affine is None:
        affine = np.eye(4)

    # NIfTI tools expect at most 32 bit labels
    if data.dtype.itemsize > 4 or data.dtype == np.bool_:
        if data.size and (data.min() < np.iinfo(np.int32).min or data.max() > np.iinfo(np.int32).max):
            raise ValueError("Label values do not fit into int32")
        data = data.astype(np.int32)

    if header is not None:
        header = header.copy()
        header.set_data_dtype(data.dtype)
        nii = nib.Nifti1Image(data, affine, header)
    else:
        nii = nib.Nifti1Image(data, affine)
        nii.set_data_dtype(data.dtype)

    nib.save(nii, str(save_path))


def probability_image_paths(
    output_dir: Union[str, Path],
    number_of_classes: int,
    prefix: str = "probability_",
    extension: str = ".nii.gz",
) -> List[Path]:
    """Paths of the per-class probability images: ``<prefix><k><extension>``."""
    output_dir = Path(output_dir)
    return [output_dir / f"{prefix}{k}{extension}" for k in range(number_of_classes)]


def save_probability_images(
    probabilities: np.ndarray,
    output_dir: Union[str, Path],
    affine: Optional[np.ndarray] = None,
    header: Optional[nib.Nifti1Header] = None,
    prefix: str = "probability_",
) -> List[Path]:
    """
    Save one float32 NIfTI image per class.

    Args:
        probabilities: Array of shape (K, *spatial)
        output_dir: Output directory
        affine: Affine transformation matrix (default: identity)
        header: Reference NIfTI header (optional)
        prefix: File name prefix

    Returns:
        Written paths, in class order
    """
    paths = probability_image_paths(output_dir, probabilities.shape[0], prefix=prefix)
    if affine is None:
        affine = np.eye(4)

    for path, image in zip(paths, probabilities):
        image = np.asarray(image, dtype=np.float32)
        if header is not None:
            class_header = header.copy()
            class_header.set_data_dtype(np.float32)
            nii = nib.Nifti1Image(image, affine, class_header)
        else:
            nii = nib.Nifti1Image(image, affine)
        path.parent.mkdir(parents=True, exist_ok=True)
        nib.save(nii, str(path))

    return paths


def load_probability_images(file_paths: Sequence[Union[str, Path]]) -> List[np.ndarray]:
    """
    Load per-class prior probability images.

    Args:
        file_paths: One NIfTI file per class, in class order

    Returns:
        List of float64 arrays
    """
    images = []
    for file_path in file_paths:
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Probability image not found: {file_path}")
        images.append(nib.load(str(file_path)).get_fdata())
    return images


def save_json(data: Dict[str, Any], save_path: Union[str, Path], indent: int = 2) -> None:
    """
    Save dictionary as JSON file.

    Args:
        data: Dictionary to save
        save_path: Path to save JSON file
        indent: Indentation level
    """
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    with open(save_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, default=_to_builtin)


def _to_builtin(value: Any) -> Any:
    """JSON fallback for numpy scalars and arrays."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def get_file_list(
    directory: Union[str, Path],
    extensions: Optional[Sequence[str]] = NIFTI_EXTENSIONS,
    recursive: bool = False,
) -> List[Path]:
    """
    Get list of files in directory.

    Args:
        directory: Directory path
        extensions: File extensions to keep (default: NIfTI)
        recursive: Whether to search recursively

    Returns:
        Sorted list of file paths
    """
    directory = Path(directory)

    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    files = list(directory.rglob("*")) if recursive else list(directory.iterdir())
    files = [f for f in files if f.is_file()]

    if extensions:
        extensions = [ext.lower() for ext in extensions]
        files = [f for f in files if any(str(f).lower().endswith(ext) for ext in extensions)]

    return sorted(files)
