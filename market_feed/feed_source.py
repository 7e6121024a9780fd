"""
Feed source connector.
Opens a feed from a local path or an HTTP(S) URL as a binary stream,
transparently decompressing gzip content.
"""

import gzip
import io
import logging
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import IO, Iterator, Union

import requests

from .utils import redact_url

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'
DEFAULT_TIMEOUT = 30


def is_url(source: Union[str, Path]) -> bool:
    return str(source).lower().startswith(('http://', 'https://'))


class ResponseStream(io.RawIOBase):
    """
    Raw binary stream over a streamed ``requests`` response body.

    Transport errors raised while the body is being read surface as
    ``OSError`` so that the parser records them as a stream failure.
    """

    def __init__(self, response: requests.Response, chunk_size: int = 64 * 1024):
        self._response = response
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self._pending = b''

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        try:
            while not self._pending:
                self._pending = next(self._chunks)
        except StopIteration:
            return 0
        except requests.RequestException as e:
            raise OSError(f"Feed download failed: {e}") from e

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


def _open_url(url: str, timeout: float, chunk_size: int) -> IO[bytes]:
    logger.info(f"Downloading feed: {redact_url(url)}")
    try:
        response = requests.get(url, stream=True, timeout=timeout)
    except requests.RequestException as e:
        raise OSError(f"Cannot connect to feed URL: {redact_url(str(e))}") from e

    try:
        response.raise_for_status()
    except requests.HTTPError as e:
        response.close()
        raise OSError(f"Feed URL returned HTTP {response.status_code}") from e

    return io.BufferedReader(ResponseStream(response, chunk_size), buffer_size=chunk_size)


@contextmanager
def open_feed(source: Union[str, Path],
              timeout: float = DEFAULT_TIMEOUT,
              chunk_size: int = 64 * 1024) -> Iterator[IO[bytes]]:
    """
    Open a feed for parsing.

    Args:
        source: Local file path or http(s) URL
        timeout: Connect/read timeout for URLs, in seconds
        chunk_size: Download chunk size

    Yields:
        Binary stream of the (decompressed) feed document

    Raises:
        FileNotFoundError: If a local feed file doesn't exist
        OSError: If the URL cannot be fetched
    """
    with ExitStack() as stack:
        if is_url(source):
            raw = stack.enter_context(_open_url(str(source), timeout, chunk_size))
        else:
            path = Path(source)
            if not path.is_file():
                raise FileNotFoundError(f"Feed file not found: {path}")
            logger.info(f"Opening feed file: {path}")
            raw = stack.enter_context(open(path, 'rb'))

        if raw.peek(len(GZIP_MAGIC))[:len(GZIP_MAGIC)] == GZIP_MAGIC:
            logger.debug("Feed is gzip-compressed")
            stream = stack.enter_context(gzip.GzipFile(fileobj=raw, mode='rb'))
        else:
            stream = raw

        yield stream
