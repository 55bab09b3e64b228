"""
stream_assembler.py — Turns a granted Send's files into one outbound stream.

A single file is passed straight through from the blob store. Several files
are packed into a zip archive on the fly: a producer thread writes the
archive into a bounded channel while the HTTP layer drains it, so neither
side ever holds more than ARCHIVE_CHANNEL_SIZE chunks. The archive's length
is unknown up front, so callers must use chunked transfer.

The channel carries an explicit end marker. A producer failure ends the
stream with an error marker instead, and the consumer raises ArchiveAborted
rather than seeing a clean end of stream. Closing the consumer early sets a
cancel flag the producer checks while blocked and between blobs.
"""

import logging
import queue
import threading
import time
import zipfile
from contextlib import closing
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, List, Optional

import config
from errors import ArchiveAborted, StorageFailure
from storage import BlobStore, chunked_read

logger = logging.getLogger(__name__)

PUT_POLL_SECONDS = 0.1

_END = object()


class _Failed:
    def __init__(self, error: BaseException):
        self.error = error


class _Cancelled(Exception):
    pass


@dataclass
class DownloadStream:
    stream: "ClosableStream"
    filename: str
    size_bytes: Optional[int]

    @property
    def is_archive(self) -> bool:
        return self.size_bytes is None

    def close(self):
        self.stream.close()


class ClosableStream:
    """Iterator of byte chunks that must be closed when the caller is done."""

    def __iter__(self) -> Iterator[bytes]:
        raise NotImplementedError()

    def close(self):
        raise NotImplementedError()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class BlobStream(ClosableStream):
    """Pass-through of one already opened blob."""

    def __init__(self, source: BinaryIO):
        self._source = source

    def __iter__(self):
        try:
            for chunk in chunked_read(self._source):
                yield chunk
        except OSError as e:
            raise StorageFailure(f"Blob read failed: {e}") from e
        finally:
            self.close()

    def close(self):
        self._source.close()


class _ChannelWriter:
    """Write-only, unseekable file object that feeds the channel.

    zipfile notices the missing tell()/seek() and switches to streaming mode
    (data descriptors after each entry).
    """

    def __init__(self, archive: "ArchiveStream"):
        self._archive = archive
        self._discarding = False

    def discard(self):
        self._discarding = True

    def write(self, data) -> int:
        if data and not self._discarding:
            self._archive._put(bytes(data))
        return len(data)

    def flush(self):
        pass


class ArchiveStream(ClosableStream):

    def __init__(self, files: List, storage: BlobStore, channel_size: Optional[int] = None):
        self._files = list(files)
        self._storage = storage
        self._channel = queue.Queue(maxsize=channel_size or config.ARCHIVE_CHANNEL_SIZE)
        self._cancelled = threading.Event()
        self._producer = threading.Thread(target=self._produce, name="archive-producer", daemon=True)

    def start(self) -> "ArchiveStream":
        self._producer.start()
        return self

    @property
    def producer(self) -> threading.Thread:
        return self._producer

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # producer side

    def _put(self, item):
        while True:
            if self._cancelled.is_set():
                raise _Cancelled()
            try:
                self._channel.put(item, timeout=PUT_POLL_SECONDS)
                return
            except queue.Full:
                continue

    def _produce(self):
        writer = _ChannelWriter(self)
        try:
            with zipfile.ZipFile(writer, mode="w", compression=zipfile.ZIP_STORED, allowZip64=True) as archive:
                try:
                    for ref in self._files:
                        if self._cancelled.is_set():
                            raise _Cancelled()
                        entry = zipfile.ZipInfo(ref.filename, date_time=time.localtime()[:6])
                        # lets zipfile pick zip64 headers for large entries
                        entry.file_size = ref.size_bytes
                        with closing(self._storage.read(ref.storage_path)) as source:
                            with archive.open(entry, mode="w") as target:
                                for chunk in chunked_read(source):
                                    target.write(chunk)
                except BaseException:
                    # the central directory must never follow a broken entry
                    writer.discard()
                    raise
            self._put(_END)
        except _Cancelled:
            logger.info("Archive consumer went away, producer stopped")
        except Exception as e:
            logger.error(f"Archive production aborted: {type(e).__name__}: {e}")
            try:
                self._put(_Failed(e))
            except _Cancelled:
                pass

    # consumer side

    def __iter__(self):
        try:
            while True:
                item = self._channel.get()
                if item is _END:
                    return
                if isinstance(item, _Failed):
                    raise ArchiveAborted(f"Archive incomplete: {item.error}") from item.error
                yield item
        finally:
            self.close()

    def close(self):
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        # free any put() the producer is blocked in
        while True:
            try:
                self._channel.get_nowait()
            except queue.Empty:
                break


def assemble(files: Iterable, storage: BlobStore, archive_name: str) -> DownloadStream:
    """Build the outbound stream for a granted retrieval.

    FILES are FileRef-like objects (filename, storage_path, size_bytes) in
    Send order; the list must not be empty.
    """
    files = list(files)
    if len(files) == 1:
        ref = files[0]
        return DownloadStream(BlobStream(storage.read(ref.storage_path)), ref.filename, ref.size_bytes)

    logger.info(f"Streaming {len(files)} files as {archive_name}")
    return DownloadStream(ArchiveStream(files, storage).start(), archive_name, None)
