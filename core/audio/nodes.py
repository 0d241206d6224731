"""
Audio graph primitives.

Blocks of mono float32 samples are pushed from sources into sinks. A sink
returns how many samples it accepted; a short count is backpressure and the
upstream node keeps the rest. Nodes never reference each other directly:
the AudioGraph that owns them records every edge and is the only place that
attaches or detaches a sink.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

EMPTY = np.zeros(0, dtype=np.float32)


def as_block(samples) -> np.ndarray:
    """Coerce input to a contiguous 1-D float32 block."""
    return np.ascontiguousarray(samples, dtype=np.float32).reshape(-1)


class AudioSink:
    """Something that accepts sample blocks."""

    def write(self, samples: np.ndarray) -> int:
        raise NotImplementedError

    def flush_samples(self) -> None:
        """End of stream; nothing more follows until the next write."""

    def release(self) -> None:
        """Drop internal buffers when the owning graph is torn down."""


class AudioSource:
    """Something that produces sample blocks into at most one sink."""

    def __init__(self):
        self._sink: Optional[AudioSink] = None

    @property
    def sink(self) -> Optional[AudioSink]:
        return self._sink

    def _attach(self, sink: AudioSink) -> None:
        self._sink = sink

    def _detach(self) -> None:
        self._sink = None

    def _forward(self, samples: np.ndarray) -> int:
        # Unconnected sources behave like a sink that swallows everything
        if self._sink is None:
            return len(samples)
        return self._sink.write(samples)

    def _forward_flush(self) -> None:
        if self._sink is not None:
            self._sink.flush_samples()

    def resume_output(self) -> None:
        """Downstream is ready again; sources with queued audio retry."""


class Fifo(AudioSink, AudioSource):
    """
    Elastic sample queue.

    Emission starts once ``prebuffer`` samples are queued and then keeps
    going even when the level dips below that mark, so a jittery producer
    does not make the output start and stop. Priming is only re-armed when
    a flushed stream has drained or the fifo is cleared.

    When a write would exceed ``capacity`` the fifo either discards the
    oldest queued samples (``overwrite=True``) or accepts nothing.
    """

    def __init__(self, capacity: int, prebuffer: int = 0, overwrite: bool = False):
        AudioSource.__init__(self)
        if capacity <= 0:
            raise ValueError(f"Fifo capacity must be positive, got {capacity}")
        if not 0 <= prebuffer <= capacity:
            raise ValueError(f"Prebuffer must be within [0, {capacity}], got {prebuffer}")
        self._capacity = capacity
        self._prebuffer = prebuffer
        self._overwrite = overwrite
        self._buf = np.zeros(capacity, dtype=np.float32)
        self._head = 0
        self._count = 0
        self._primed = prebuffer == 0
        self._flushing = False

    def __len__(self) -> int:
        return self._count

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def prebuffer(self) -> int:
        return self._prebuffer

    @property
    def overwrite(self) -> bool:
        return self._overwrite

    @property
    def is_emitting(self) -> bool:
        """True once the prebuffer threshold has been reached."""
        return self._primed

    def write(self, samples: np.ndarray) -> int:
        samples = as_block(samples)
        count = len(samples)
        if count == 0:
            return 0

        self._flushing = False
        if self._count + count > self._capacity:
            if not self._overwrite:
                logger.debug("Fifo full (%d/%d), rejecting %d samples",
                             self._count, self._capacity, count)
                return 0
            if count >= self._capacity:
                self._head = 0
                self._count = 0
                samples = samples[-self._capacity:]
            else:
                self._discard(self._count + count - self._capacity)

        self._store(samples)
        if not self._primed and self._count >= self._prebuffer:
            self._primed = True
        self._drain()
        return count

    def read(self, count: int) -> np.ndarray:
        """Pull up to ``count`` samples; empty until the fifo is primed."""
        if not self._primed or count <= 0:
            return EMPTY
        count = min(count, self._count)
        out = self._peek(count)
        self._discard(count)
        if self._count == 0 and self._flushing:
            self._finish_flush()
        return out

    def flush_samples(self) -> None:
        self._flushing = True
        # Whatever is queued at end of stream goes out even below the prebuffer mark
        self._primed = True
        if self._count == 0:
            self._finish_flush()
        else:
            self._drain()

    def resume_output(self) -> None:
        self._drain()

    def clear(self) -> None:
        """Drop queued samples and re-arm prebuffering."""
        self._head = 0
        self._count = 0
        self._flushing = False
        self._primed = self._prebuffer == 0

    def release(self) -> None:
        self.clear()

    def _drain(self) -> None:
        if self._sink is None or not self._primed:
            return
        while self._count > 0:
            chunk = self._peek(self._count)
            written = self._sink.write(chunk)
            if written <= 0:
                break
            self._discard(min(written, len(chunk)))
            if written < len(chunk):
                break
        if self._count == 0 and self._flushing:
            self._finish_flush()

    def _finish_flush(self) -> None:
        self._flushing = False
        self._primed = self._prebuffer == 0
        self._forward_flush()

    def _store(self, samples: np.ndarray) -> None:
        tail = (self._head + self._count) % self._capacity
        first = min(len(samples), self._capacity - tail)
        self._buf[tail:tail + first] = samples[:first]
        if first < len(samples):
            self._buf[:len(samples) - first] = samples[first:]
        self._count += len(samples)

    def _peek(self, count: int) -> np.ndarray:
        end = self._head + count
        if end <= self._capacity:
            return self._buf[self._head:end].copy()
        return np.concatenate((self._buf[self._head:], self._buf[:end - self._capacity]))

    def _discard(self, count: int) -> None:
        self._head = (self._head + count) % self._capacity
        self._count -= count


class Valve(AudioSink, AudioSource):
    """
    Pass/block gate.

    A closed valve reports every sample as accepted and drops it, so the
    producer upstream never stalls on a closed path.
    """

    def __init__(self, is_open: bool = False):
        AudioSource.__init__(self)
        self._open = is_open

    @property
    def is_open(self) -> bool:
        return self._open

    def set_open(self, is_open: bool) -> None:
        if is_open == self._open:
            return
        self._open = is_open
        if not is_open:
            # Let whatever is downstream drain what it already holds
            self._forward_flush()

    def write(self, samples: np.ndarray) -> int:
        if not self._open:
            return len(samples)
        return self._forward(samples)

    def flush_samples(self) -> None:
        if self._open:
            self._forward_flush()


class _Branch:
    __slots__ = ("sink", "enabled", "backlog")

    def __init__(self, sink: AudioSink, enabled: bool):
        self.sink = sink
        self.enabled = enabled
        # Samples this sink has not taken yet, oldest first
        self.backlog = EMPTY


class Splitter(AudioSink):
    """
    One-to-many fan-out.

    Every enabled sink receives each block. When a sink accepts only part
    of a block, the rest is queued for that sink alone and handed over
    ahead of new audio on the next write or ``resume_output()``. Other
    sinks keep receiving, and the splitter itself always takes the whole
    block, so upstream never has to retry.

    A queue longer than ``max_backlog`` samples loses its oldest samples.
    """

    def __init__(self, max_backlog: Optional[int] = None):
        if max_backlog is not None and max_backlog <= 0:
            raise ValueError(f"Backlog limit must be positive, got {max_backlog}")
        self._branches: List[_Branch] = []
        self._max_backlog = max_backlog

    @property
    def sinks(self) -> List[AudioSink]:
        return [branch.sink for branch in self._branches]

    def add_sink(self, sink: AudioSink, enabled: bool = True) -> None:
        if self._find(sink) is not None:
            raise ValueError("Sink already registered with splitter")
        self._branches.append(_Branch(sink, enabled))

    def remove_sink(self, sink: AudioSink) -> None:
        branch = self._find(sink)
        if branch is not None:
            self._branches.remove(branch)

    def enable_sink(self, sink: AudioSink, enabled: bool) -> None:
        branch = self._find(sink)
        if branch is None:
            raise KeyError("Sink not registered with splitter")
        if branch.enabled and not enabled:
            branch.sink.flush_samples()
        branch.enabled = enabled
        branch.backlog = EMPTY

    def is_enabled(self, sink: AudioSink) -> bool:
        branch = self._find(sink)
        return branch is not None and branch.enabled

    def pending(self, sink: AudioSink) -> int:
        """Number of samples queued for a sink that held back."""
        branch = self._find(sink)
        if branch is None:
            raise KeyError("Sink not registered with splitter")
        return len(branch.backlog)

    def write(self, samples: np.ndarray) -> int:
        samples = as_block(samples)
        for branch in self._branches:
            if branch.enabled:
                self._deliver(branch, samples)
        return len(samples)

    def resume_output(self) -> None:
        """Retry queued audio for every sink that held back."""
        for branch in self._branches:
            if branch.enabled and len(branch.backlog):
                self._deliver(branch, EMPTY)

    def flush_samples(self) -> None:
        for branch in self._branches:
            if not branch.enabled:
                continue
            if len(branch.backlog):
                self._deliver(branch, EMPTY)
            branch.sink.flush_samples()

    def release(self) -> None:
        for branch in self._branches:
            branch.backlog = EMPTY

    def _deliver(self, branch: _Branch, samples: np.ndarray) -> None:
        if len(branch.backlog):
            pending = np.concatenate((branch.backlog, samples))
        else:
            pending = samples
        if not len(pending):
            return

        written = max(branch.sink.write(pending), 0)
        rest = pending[written:]
        if self._max_backlog is not None and len(rest) > self._max_backlog:
            dropped = len(rest) - self._max_backlog
            logger.debug("Splitter backlog full, dropping %d samples", dropped)
            rest = rest[dropped:]
        # Upstream may reuse its block buffer
        branch.backlog = rest.copy() if len(rest) else EMPTY

    def _find(self, sink: AudioSink) -> Optional[_Branch]:
        for branch in self._branches:
            if branch.sink is sink:
                return branch
        return None


class AudioGraph:
    """
    Owner of the processing nodes of one call.

    Nodes are held by name. Objects that live longer than the call (devices,
    the remote endpoint) are registered with ``owned=False`` so edges can
    reach them without the graph releasing them. Edges are kept in a
    separate adjacency list of names and carry no ownership.
    """

    def __init__(self):
        self._nodes: Dict[str, object] = {}
        self._owned: Dict[str, bool] = {}
        self._edges: List[Tuple[str, str]] = []

    def add(self, name: str, node, owned: bool = True):
        if name in self._nodes:
            raise ValueError(f"Node '{name}' already in graph")
        self._nodes[name] = node
        self._owned[name] = owned
        return node

    def node(self, name: str):
        return self._nodes[name]

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    @property
    def edges(self) -> List[Tuple[str, str]]:
        return list(self._edges)

    def connect(self, src: str, dst: str, enabled: bool = True) -> None:
        """Register ``dst`` as a sink of ``src``."""
        source = self._nodes[src]
        sink = self._nodes[dst]
        if isinstance(source, Splitter):
            source.add_sink(sink, enabled)
        elif isinstance(source, AudioSource):
            if source.sink is not None:
                raise ValueError(f"Node '{src}' already has a sink")
            source._attach(sink)
        else:
            raise TypeError(f"Node '{src}' cannot produce audio")
        self._edges.append((src, dst))
        logger.debug("Graph edge %s -> %s", src, dst)

    def disconnect(self, src: str, dst: str) -> None:
        source = self._nodes[src]
        if isinstance(source, Splitter):
            source.remove_sink(self._nodes[dst])
        else:
            source._detach()
        self._edges.remove((src, dst))

    def detach_all(self) -> None:
        """Remove every edge, newest first."""
        for src, dst in list(reversed(self._edges)):
            self.disconnect(src, dst)

    def clear(self) -> None:
        """Forget every node; edges must already be detached."""
        if self._edges:
            raise RuntimeError("Cannot clear a graph with connected edges")
        self._nodes.clear()
        self._owned.clear()

    def release(self) -> None:
        """Detach everything, release owned node buffers and forget all nodes."""
        self.detach_all()
        for name, node in self._nodes.items():
            if self._owned[name]:
                node.release()
        self.clear()
