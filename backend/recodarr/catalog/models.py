"""
Media catalog models.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class MediaInfo(BaseModel):
    """Technical facts about a media file, as recorded in the catalog."""
    
    model_config = ConfigDict(extra="forbid")
    
    size_bytes: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    resolution_width: Optional[int] = None
    resolution_height: Optional[int] = None
    audio_channels: Optional[int] = None


class MediaRecord(BaseModel):
    """One row of the media table."""
    
    model_config = ConfigDict(extra="forbid")
    
    file_path: str
    title: Optional[str] = None
    current_size: Optional[int] = None
    original_size: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    resolution_width: Optional[int] = None
    resolution_height: Optional[int] = None
    audio_channels: Optional[int] = None
    encoding_job_id: Optional[str] = None
    last_size_check_at: Optional[datetime] = None
    
    @property
    def processed(self) -> bool:
        """Whether a completed encode has been recorded for this file."""
        return self.encoding_job_id is not None
