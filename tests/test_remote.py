"""
Tests for the echo-test remote endpoint.
"""
import numpy as np
import pytest

from core.audio.remote import LoopbackEndpoint, RemoteEndpoint
from core.audio.states import ConnectionState
from conftest import RecordingSink


@pytest.fixture
def station(scheduler):
    station = LoopbackEndpoint(scheduler=scheduler, connect_delay=0.5, block_ms=20)
    sink = RecordingSink()
    station._attach(sink)
    station.received = sink
    return station


class TestLoopbackConnection:
    """Connection state sequence."""

    def test_connect_steps_through_connecting(self, station, scheduler):
        states = []
        station.add_state_listener(states.append)

        station.connect()
        assert station.state is ConnectionState.CONNECTING

        scheduler.advance(0.5)
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]

    def test_accept_connects_immediately(self, station):
        station.accept()
        assert station.state is ConnectionState.CONNECTED

    def test_disconnect_while_connecting_cancels(self, station, scheduler):
        station.connect()
        station.disconnect()
        scheduler.advance(1.0)

        assert station.state is ConnectionState.DISCONNECTED

    def test_remote_hangup_says_bye_then_disconnects(self, station, scheduler):
        states = []
        station.accept()
        station.add_state_listener(states.append)

        station.remote_hangup(linger=0.2)
        scheduler.advance(0.2)

        assert states == [ConnectionState.BYE_RECEIVED, ConnectionState.DISCONNECTED]

    def test_unsubscribe(self, station):
        states = []
        unsubscribe = station.add_state_listener(states.append)
        unsubscribe()
        station.accept()

        assert states == []

    def test_base_endpoint_is_abstract(self):
        endpoint = RemoteEndpoint()
        with pytest.raises(NotImplementedError):
            endpoint.connect()


class TestLoopbackEcho:
    """Recorded transmissions come back after the flush."""

    def test_echo_after_flush(self, station, scheduler):
        receiving = []
        station.add_receiving_listener(receiving.append)
        station.accept()

        sent = np.linspace(-0.5, 0.5, 400, dtype=np.float32)
        station.write(sent[:200])
        station.write(sent[200:])
        station.flush_samples()
        assert receiving == [True]

        scheduler.advance(1.0)
        np.testing.assert_array_equal(station.received.received, sent)
        assert receiving == [True, False]
        assert station.received.flushes == 1

    def test_echo_paced_in_blocks(self, station, scheduler):
        station.accept()
        station.write(np.zeros(800, dtype=np.float32))
        station.flush_samples()

        assert len(station.received.received) == 160
        scheduler.advance(0.02)
        assert len(station.received.received) == 320

    def test_nothing_recorded_while_disconnected(self, station, scheduler):
        station.write(np.ones(100, dtype=np.float32))
        station.flush_samples()
        scheduler.advance(1.0)

        assert len(station.received.blocks) == 0

    def test_new_transmission_cuts_echo(self, station, scheduler):
        station.accept()
        station.write(np.ones(800, dtype=np.float32))
        station.flush_samples()

        station.write(np.zeros(160, dtype=np.float32))
        scheduler.advance(1.0)

        assert len(station.received.received) == 160
        assert not station.is_receiving

    def test_recording_capped(self, scheduler):
        station = LoopbackEndpoint(scheduler=scheduler, max_seconds=0.1)
        station.accept()
        station.write(np.ones(2000, dtype=np.float32))

        assert station._recorded == 800
