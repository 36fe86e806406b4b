"""
Finalization errors.

finalize() reports failures through FinalizeResult rather than raising;
these exceptions are used inside the protocol and by callers that want
to turn a failed result into an exception.
"""


class FinalizeError(Exception):
    """Base exception for finalization failures."""
    
    pass


class FinalizeValidationError(FinalizeError):
    """
    Finalization inputs are unusable.
    
    Raised when:
    - A path is empty
    - The temp file is missing, not a regular file, or empty
    
    The destination has not been touched.
    """
    
    pass


class CopyVerificationError(FinalizeError):
    """The copied destination does not match the temp file size."""
    
    def __init__(self, temp_size: int, destination_size: int):
        self.temp_size = temp_size
        self.destination_size = destination_size
        super().__init__(
            f"File size mismatch: temp={temp_size} bytes, destination={destination_size} bytes"
        )
