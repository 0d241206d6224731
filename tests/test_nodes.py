"""
Tests for the audio graph primitives: Fifo, Valve, Splitter and AudioGraph.
"""
import numpy as np
import pytest

from core.audio.multirate import SampleChain
from core.audio.nodes import AudioGraph, Fifo, Splitter, Valve
from conftest import RecordingSink


def ramp(start, count):
    return np.arange(start, start + count, dtype=np.float32)


class TestFifo:
    """Elastic queue behaviour."""

    def test_invalid_sizes_rejected(self):
        with pytest.raises(ValueError):
            Fifo(0)
        with pytest.raises(ValueError):
            Fifo(10, prebuffer=11)

    def test_read_empty_until_prebuffer_reached(self):
        fifo = Fifo(capacity=100, prebuffer=30, overwrite=True)

        assert fifo.write(ramp(0, 20)) == 20
        assert len(fifo.read(50)) == 0
        assert not fifo.is_emitting

        fifo.write(ramp(20, 10))
        assert fifo.is_emitting
        out = fifo.read(50)
        np.testing.assert_array_equal(out, ramp(0, 30))

    def test_keeps_emitting_below_prebuffer_once_primed(self):
        fifo = Fifo(capacity=100, prebuffer=30)
        fifo.write(ramp(0, 30))
        fifo.read(25)
        fifo.write(ramp(30, 5))

        np.testing.assert_array_equal(fifo.read(100), ramp(25, 10))

    def test_overwrite_discards_oldest(self):
        fifo = Fifo(capacity=10, prebuffer=4, overwrite=True)
        fifo.write(ramp(0, 8))

        assert fifo.write(ramp(8, 6)) == 6
        assert len(fifo) == 10
        np.testing.assert_array_equal(fifo.read(10), ramp(4, 10))

    def test_overwrite_with_oversized_block_keeps_tail(self):
        fifo = Fifo(capacity=10, overwrite=True)
        fifo.write(ramp(0, 3))
        fifo.write(ramp(100, 25))

        np.testing.assert_array_equal(fifo.read(10), ramp(115, 10))

    def test_blocking_mode_rejects_overflowing_write(self):
        fifo = Fifo(capacity=10)
        assert fifo.write(ramp(0, 8)) == 8
        assert fifo.write(ramp(8, 5)) == 0
        assert len(fifo) == 8

    def test_wraparound_preserves_order(self):
        fifo = Fifo(capacity=8)
        fifo.write(ramp(0, 6))
        fifo.read(5)
        fifo.write(ramp(6, 6))

        np.testing.assert_array_equal(fifo.read(8), ramp(5, 7))

    def test_pushes_to_sink_once_primed(self):
        fifo = Fifo(capacity=100, prebuffer=20)
        sink = RecordingSink()
        fifo._attach(sink)

        fifo.write(ramp(0, 10))
        assert len(sink.received) == 0

        fifo.write(ramp(10, 10))
        np.testing.assert_array_equal(sink.received, ramp(0, 20))
        assert len(fifo) == 0

    def test_short_write_keeps_remainder(self):
        fifo = Fifo(capacity=100)
        sink = RecordingSink(limit=4)
        fifo._attach(sink)

        fifo.write(ramp(0, 10))
        assert len(sink.received) == 4
        assert len(fifo) == 6

        sink.limit = None
        fifo.resume_output()
        np.testing.assert_array_equal(sink.received, ramp(0, 10))

    def test_flush_drains_below_prebuffer_and_rearms(self):
        fifo = Fifo(capacity=100, prebuffer=50)
        sink = RecordingSink()
        fifo._attach(sink)

        fifo.write(ramp(0, 10))
        fifo.flush_samples()

        np.testing.assert_array_equal(sink.received, ramp(0, 10))
        assert sink.flushes == 1
        assert not fifo.is_emitting

    def test_clear_drops_samples(self):
        fifo = Fifo(capacity=10, prebuffer=2)
        fifo.write(ramp(0, 5))
        fifo.clear()

        assert len(fifo) == 0
        assert not fifo.is_emitting


class TestValve:
    """Pass/block gate."""

    def test_closed_valve_swallows_audio(self):
        valve = Valve()
        sink = RecordingSink(limit=0)
        valve._attach(sink)

        assert valve.write(ramp(0, 16)) == 16
        assert len(sink.blocks) == 0

    def test_open_valve_forwards_and_reports_backpressure(self):
        valve = Valve(is_open=True)
        sink = RecordingSink(limit=5)
        valve._attach(sink)

        assert valve.write(ramp(0, 16)) == 5

    def test_closing_flushes_downstream(self):
        valve = Valve(is_open=True)
        sink = RecordingSink()
        valve._attach(sink)

        valve.set_open(False)
        valve.set_open(False)
        assert sink.flushes == 1

    def test_flush_only_passes_when_open(self):
        valve = Valve()
        sink = RecordingSink()
        valve._attach(sink)

        valve.flush_samples()
        assert sink.flushes == 0


class TestSplitter:
    """One-to-many fan-out."""

    def test_all_enabled_sinks_get_each_block(self):
        splitter = Splitter()
        a, b = RecordingSink(), RecordingSink()
        splitter.add_sink(a)
        splitter.add_sink(b)

        assert splitter.write(ramp(0, 8)) == 8
        np.testing.assert_array_equal(a.received, ramp(0, 8))
        np.testing.assert_array_equal(b.received, ramp(0, 8))

    def test_slow_sink_queues_without_holding_back_others(self):
        splitter = Splitter()
        fast, slow = RecordingSink(), RecordingSink(limit=3)
        splitter.add_sink(fast)
        splitter.add_sink(slow)

        assert splitter.write(ramp(0, 8)) == 8
        assert splitter.pending(slow) == 5
        assert splitter.pending(fast) == 0

        slow.limit = None
        splitter.resume_output()
        np.testing.assert_array_equal(fast.received, ramp(0, 8))
        np.testing.assert_array_equal(slow.received, ramp(0, 8))
        assert splitter.pending(slow) == 0

    def test_behind_sample_chain_keeps_every_sample(self):
        chain = SampleChain.decimating(16000, 16000)
        splitter = Splitter()
        chain._attach(splitter)
        fast, slow = RecordingSink(), RecordingSink(limit=3)
        splitter.add_sink(fast)
        splitter.add_sink(slow)

        chain.write(ramp(0, 8))
        chain.write(ramp(100, 8))

        expected = np.concatenate((ramp(0, 8), ramp(100, 8)))
        np.testing.assert_array_equal(fast.received, expected)
        np.testing.assert_array_equal(slow.received, ramp(0, 6))

        slow.limit = None
        chain.write(ramp(200, 4))
        np.testing.assert_array_equal(slow.received, np.concatenate((expected, ramp(200, 4))))

    def test_backlog_limit_drops_oldest(self):
        splitter = Splitter(max_backlog=4)
        sink = RecordingSink(limit=0)
        splitter.add_sink(sink)

        splitter.write(ramp(0, 10))
        assert splitter.pending(sink) == 4

        sink.limit = None
        splitter.resume_output()
        np.testing.assert_array_equal(sink.received, ramp(6, 4))

    def test_flush_hands_over_backlog_first(self):
        splitter = Splitter()
        sink = RecordingSink(limit=2)
        splitter.add_sink(sink)
        splitter.write(ramp(0, 5))

        sink.limit = None
        splitter.flush_samples()
        np.testing.assert_array_equal(sink.received, ramp(0, 5))
        assert sink.flushes == 1

    def test_disabling_sink_drops_its_backlog(self):
        splitter = Splitter()
        sink = RecordingSink(limit=1)
        splitter.add_sink(sink)
        splitter.write(ramp(0, 4))

        splitter.enable_sink(sink, False)
        assert splitter.pending(sink) == 0

    def test_disabled_sink_skipped_and_flushed(self):
        splitter = Splitter()
        a, b = RecordingSink(), RecordingSink()
        splitter.add_sink(a)
        splitter.add_sink(b, enabled=False)

        splitter.write(ramp(0, 4))
        assert len(b.blocks) == 0

        splitter.enable_sink(a, False)
        assert a.flushes == 1
        assert splitter.write(ramp(0, 4)) == 4

    def test_duplicate_and_unknown_sinks(self):
        splitter = Splitter()
        sink = RecordingSink()
        splitter.add_sink(sink)

        with pytest.raises(ValueError):
            splitter.add_sink(sink)
        with pytest.raises(KeyError):
            splitter.enable_sink(RecordingSink(), True)


class TestAudioGraph:
    """Ownership and edge bookkeeping."""

    def test_connect_records_edges(self):
        graph = AudioGraph()
        graph.add("valve", Valve(is_open=True))
        graph.add("split", Splitter())
        graph.add("sink", RecordingSink())
        graph.connect("valve", "split")
        graph.connect("split", "sink")

        assert graph.edges == [("valve", "split"), ("split", "sink")]
        graph.node("valve").write(ramp(0, 4))
        assert len(graph.node("sink").received) == 4

    def test_source_takes_only_one_sink(self):
        graph = AudioGraph()
        graph.add("valve", Valve())
        graph.add("a", RecordingSink())
        graph.add("b", RecordingSink())
        graph.connect("valve", "a")

        with pytest.raises(ValueError):
            graph.connect("valve", "b")

    def test_sink_only_node_cannot_be_source(self):
        graph = AudioGraph()
        graph.add("a", RecordingSink())
        graph.add("b", RecordingSink())

        with pytest.raises(TypeError):
            graph.connect("a", "b")

    def test_release_detaches_and_releases_owned_nodes_only(self):
        graph = AudioGraph()
        fifo = graph.add("fifo", Fifo(capacity=10, prebuffer=5))
        external = Fifo(capacity=10, prebuffer=5)
        graph.add("external", external, owned=False)
        valve = graph.add("valve", Valve(is_open=True))
        graph.connect("fifo", "valve")
        graph.connect("valve", "external")

        fifo.write(ramp(0, 3))
        external.write(ramp(0, 3))
        graph.release()

        assert graph.edges == []
        assert valve.sink is None
        assert fifo.sink is None
        assert len(fifo) == 0
        assert len(external) == 3
        assert "fifo" not in graph

    def test_clear_requires_detached_edges(self):
        graph = AudioGraph()
        graph.add("valve", Valve())
        graph.add("sink", RecordingSink())
        graph.connect("valve", "sink")

        with pytest.raises(RuntimeError):
            graph.clear()

        graph.detach_all()
        graph.clear()
        assert "valve" not in graph
