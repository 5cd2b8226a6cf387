"""
Stream codec capabilities.

Each codec wraps one byte stream. Decoders return readers, encoders return
writers; neither closes the stream it wraps.
"""

import bz2
import gzip
import io
import logging
import lzma
from typing import BinaryIO, Callable, Optional

import lz4.frame
import snappy
import zstandard as zstd

from base_classes import CodecKind, StreamCodec

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024

# First chunk of every snappy framed stream
SNAPPY_STREAM_IDENTIFIER = b'\xff\x06\x00\x00sNaPpY'


class DecompressorReader(io.RawIOBase):
    """
    Readable stream over an incremental decompressor.

    ``feed`` turns a compressed chunk into decompressed bytes; ``finish`` is
    called once the source is exhausted and must raise if the compressed
    stream ended early.
    """

    def __init__(self, source: BinaryIO,
                 feed: Callable[[bytes], bytes],
                 finish: Callable[[], bytes],
                 chunk_size: int = READ_CHUNK_SIZE):
        super().__init__()
        self._source = source
        self._feed = feed
        self._finish = finish
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer and not self._eof:
            chunk = self._source.read(self._chunk_size)
            if chunk:
                self._buffer.extend(self._feed(chunk))
            else:
                self._buffer.extend(self._finish())
                self._eof = True

        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        del self._buffer[:size]
        return size


class CompressorWriter(io.RawIOBase):
    """Writable stream over an incremental compressor"""

    def __init__(self, target: BinaryIO,
                 compress: Callable[[bytes], bytes],
                 flush: Callable[[], bytes]):
        super().__init__()
        self._target = target
        self._compress = compress
        self._flush = flush

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        data = bytes(b)
        out = self._compress(data)
        if out:
            self._target.write(out)
        return len(data)

    def close(self) -> None:
        if not self.closed:
            try:
                tail = self._flush()
                if tail:
                    self._target.write(tail)
                self._target.flush()
            finally:
                super().close()


class GzipCodec(StreamCodec):
    kind = CodecKind.GZIP

    def decoder(self, reader: BinaryIO) -> BinaryIO:
        return gzip.GzipFile(fileobj=reader, mode='rb')

    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        return gzip.GzipFile(
            fileobj=writer,
            mode='wb',
            compresslevel=6 if level is None else level,
            mtime=0,
        )


class Bzip2Codec(StreamCodec):
    kind = CodecKind.BZIP2

    def decoder(self, reader: BinaryIO) -> BinaryIO:
        return bz2.BZ2File(reader, mode='rb')

    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        return bz2.BZ2File(writer, mode='wb', compresslevel=9 if level is None else level)


class LzmaCodec(StreamCodec):
    """Reads both .xz and legacy .lzma streams, always writes .xz"""
    kind = CodecKind.LZMA

    def decoder(self, reader: BinaryIO) -> BinaryIO:
        return lzma.LZMAFile(reader, mode='rb', format=lzma.FORMAT_AUTO)

    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        return lzma.LZMAFile(writer, mode='wb', format=lzma.FORMAT_XZ,
                             preset=6 if level is None else level)


class Lz4Codec(StreamCodec):
    kind = CodecKind.LZ4

    def decoder(self, reader: BinaryIO) -> BinaryIO:
        return lz4.frame.LZ4FrameFile(reader, mode='rb')

    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        return lz4.frame.LZ4FrameFile(
            writer,
            mode='wb',
            compression_level=lz4.frame.COMPRESSIONLEVEL_MIN if level is None else level,
        )


class ZstdCodec(StreamCodec):
    """Zstandard, reading across concatenated frames"""
    kind = CodecKind.ZSTD

    def decoder(self, reader: BinaryIO) -> BinaryIO:
        dctx = zstd.ZstdDecompressor()
        state = {'obj': dctx.decompressobj(), 'seen_input': False}

        def feed(chunk: bytes) -> bytes:
            state['seen_input'] = True
            out = b''
            data = chunk
            while data:
                # A finished frame followed by more data starts the next frame
                if state['obj'].eof:
                    state['obj'] = dctx.decompressobj()
                out += state['obj'].decompress(data)
                data = state['obj'].unused_data if state['obj'].eof else b''
            return out

        def finish() -> bytes:
            if not state['obj'].eof:
                if state['seen_input']:
                    raise zstd.ZstdError("zstd stream ended before the end of the frame")
                raise zstd.ZstdError("empty input is not a zstd stream")
            return b''

        return io.BufferedReader(DecompressorReader(reader, feed, finish))

    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        cobj = zstd.ZstdCompressor(level=3 if level is None else level).compressobj()
        return CompressorWriter(writer, cobj.compress, cobj.flush)


class SnappyCodec(StreamCodec):
    """Snappy framing format (.sz)"""
    kind = CodecKind.SNAPPY

    def decoder(self, reader: BinaryIO) -> BinaryIO:
        decompressor = snappy.StreamDecompressor()
        return io.BufferedReader(
            DecompressorReader(reader, decompressor.decompress, decompressor.flush)
        )

    def encoder(self, writer: BinaryIO, level: Optional[int] = None) -> BinaryIO:
        framer = _SnappyFramer()
        return CompressorWriter(writer, framer.compress, framer.finish)


class _SnappyFramer:
    """Feeds a snappy StreamCompressor; empty input still gets a stream identifier"""

    def __init__(self):
        self._compressor = snappy.StreamCompressor()
        self._started = False

    def compress(self, data: bytes) -> bytes:
        if not data:
            return b''
        self._started = True
        return self._compressor.add_chunk(data)

    def finish(self) -> bytes:
        return b'' if self._started else SNAPPY_STREAM_IDENTIFIER
