"""Helpers for reassembling raw decoder output into PCM samples."""
import numpy as np
from audioaware.core.logging import logger

BYTES_PER_SAMPLE = 2  # s16le mono
PCM_DTYPE = np.dtype("<i2")


def bytes_to_samples(data: bytes) -> np.ndarray:
    """
    Convert raw s16le bytes to an int16 numpy array.

    Args:
        data: Raw PCM bytes, length must be a multiple of 2

    Returns:
        Native-order int16 samples
    """
    if len(data) % BYTES_PER_SAMPLE != 0:
        raise ValueError(f"PCM data size {len(data)} is not a multiple of {BYTES_PER_SAMPLE} bytes")
    return np.frombuffer(data, dtype=PCM_DTYPE).astype(np.int16)


class PcmReassembler:
    """
    Splits an arbitrarily chunked byte stream into whole int16 samples.

    A chunk may end in the middle of a sample; the trailing byte is held
    until the next chunk arrives.
    """

    def __init__(self):
        self.leftover = b""
        self.total_bytes = 0

    def feed(self, chunk: bytes) -> np.ndarray:
        """
        Add a chunk and return every complete sample now available.

        Args:
            chunk: Bytes read from the decoder

        Returns:
            int16 samples (empty if fewer than two bytes are buffered)
        """
        if not chunk:
            return np.zeros(0, dtype=np.int16)

        self.total_bytes += len(chunk)
        merged = self.leftover + chunk
        full_bytes = len(merged) - (len(merged) % BYTES_PER_SAMPLE)

        if full_bytes <= 0:
            self.leftover = merged
            return np.zeros(0, dtype=np.int16)

        self.leftover = merged[full_bytes:]
        return bytes_to_samples(merged[:full_bytes])

    def flush(self) -> bytes:
        """Discard and return any dangling partial sample at end of stream."""
        dangling = self.leftover
        if dangling:
            logger.debug(f"Discarding {len(dangling)} trailing byte(s) of incomplete sample")
        self.leftover = b""
        return dangling
