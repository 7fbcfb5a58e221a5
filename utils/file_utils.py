"""
File operation utilities
"""

from pathlib import Path
from typing import List

from core.models import MediaKind

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.gif', '.tiff', '.webp'}
VIDEO_EXTENSIONS = {'.mp4', '.mov', '.mkv', '.webm', '.avi'}
DOCUMENT_EXTENSIONS = {'.pdf', '.zip', '.docx', '.xlsx', '.pptx', '.txt'}


def media_kind_for(path: str) -> MediaKind:
    """Guess the media kind from the file extension"""
    suffix = Path(path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if suffix in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return MediaKind.BINARY


def get_media_files(directory: str, recursive: bool = True) -> List[str]:
    """Get all image, video and document files in directory"""
    extensions = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS | DOCUMENT_EXTENSIONS

    path = Path(directory)
    candidates = path.rglob('*') if recursive else path.glob('*')

    return sorted(
        str(f) for f in candidates
        if f.is_file() and f.suffix.lower() in extensions
    )
