"""Scatter lists: fixed-capacity data split over several buffers."""

from nvmedisc.errors import NvmeError


class ShortBufferError(NvmeError):
    """Raised when a write does not fit in the scatter list."""

    def __init__(self, written):
        super().__init__(f"short buffer: only {written} bytes written")
        self.written = written


class ScatterList:
    """A fixed amount of data held in buffers of at most ``buffer_length`` bytes."""

    def __init__(self, data_length, buffer_length):
        if data_length > 0 and buffer_length <= 0:
            raise ValueError("buffer_length must be positive")
        step = max(buffer_length, 1)
        self.buffers = [
            bytearray(min(step, data_length - start))
            for start in range(0, max(data_length, 0), step)
        ]
        self.capacity = max(data_length, 0)
        self.written = 0

    def writable(self):
        """Bytes that can still be written before the list is full."""
        return self.capacity - self.written

    def getvalue(self):
        """All buffers joined into one bytes object."""
        return b"".join(self.buffers)

    def __repr__(self):
        return f"ScatterList(capacity={self.capacity}, written={self.written}, buffers={len(self.buffers)})"


class _Cursor:
    sgl: ScatterList
    _index: int
    _offset: int
    _consumed: int

    def _advance(self, count, buffer_length):
        self._offset += count
        self._consumed += count
        if self._offset >= buffer_length:
            self._offset = 0
            self._index += 1


class ScatterListWriter(_Cursor):
    """Sequential writer into a scatter list."""

    def __init__(self, sgl):
        self.sgl = sgl
        self._index = 0
        self._offset = 0
        self._consumed = 0

    def remaining(self):
        """Bytes left between the cursor and the end of the list."""
        return self.sgl.capacity - self._consumed

    def write(self, data):
        """Write ``data``; raise ShortBufferError if it does not all fit."""
        view = memoryview(bytes(data))
        pos = 0
        buffers = self.sgl.buffers
        while pos < len(view) and self._index < len(buffers):
            buffer = buffers[self._index]
            count = min(len(buffer) - self._offset, len(view) - pos)
            buffer[self._offset:self._offset + count] = view[pos:pos + count]
            pos += count
            self.sgl.written += count
            self._advance(count, len(buffer))
        if pos < len(view):
            raise ShortBufferError(pos)
        return pos


class ScatterListReader(_Cursor):
    """Sequential reader from a scatter list."""

    def __init__(self, sgl):
        self.sgl = sgl
        self._index = 0
        self._offset = 0
        self._consumed = 0

    def remaining(self):
        """Bytes left between the cursor and the end of the list."""
        return self.sgl.capacity - self._consumed

    def read(self, size=-1):
        """Read up to ``size`` bytes (all remaining if negative); b"" at the end."""
        if size is None or size < 0:
            size = self.remaining()
        chunks = []
        buffers = self.sgl.buffers
        while size > 0 and self._index < len(buffers):
            buffer = buffers[self._index]
            count = min(len(buffer) - self._offset, size)
            chunks.append(bytes(buffer[self._offset:self._offset + count]))
            size -= count
            self._advance(count, len(buffer))
        return b"".join(chunks)