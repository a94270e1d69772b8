# images.py
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError


def image_dimensions(source) -> Optional[Tuple[int, int]]:
    """
    Reads (width, height) of an image from a path or binary stream.
    Returns None if the content is not a readable image.
    """
    try:
        with Image.open(source) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logging.warning(f"Could not read image dimensions of {source}: {e}")
        return None


def is_valid_image(stream) -> bool:
    """
    Checks that a seekable binary stream holds a decodable image.
    The stream is rewound afterwards.
    """
    position = stream.tell()
    try:
        with Image.open(stream) as img:
            img.verify()
        return True
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
        logging.warning(f"Uploaded content is not a valid image: {e}")
        return False
    finally:
        stream.seek(position)
