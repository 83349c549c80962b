"""
Tests for the session lifecycle controller.
Fake channel, microphone and output clock; no devices or network.
"""
import asyncio
import base64
import unittest

import numpy as np

import metrics.session_metrics as session_metrics
from streaming.live_channel import CloseInfo, ServerEvent
from streaming.session_controller import SessionActiveError, SessionController, SessionState
from tests.fakes import FakeCapture, FakeChannel, FakeOutputContext, pcm_payload


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        session_metrics.reset()
        self.channels = []
        self.outputs = []
        self.captures = []
        self.capture_error = None
        self.capture_gate = None
        self.output_gate = None
        self.events = []

    def _channel_factory(self, handler, language):
        channel = FakeChannel(handler, language)
        self.channels.append(channel)
        return channel

    async def _output_factory(self, sample_rate):
        if self.output_gate is not None:
            await self.output_gate.wait()
        output = FakeOutputContext(sample_rate)
        self.outputs.append(output)
        return output

    async def _capture_factory(self, handler):
        if self.capture_gate is not None:
            await self.capture_gate.wait()
        if self.capture_error is not None:
            raise self.capture_error
        capture = FakeCapture(handler)
        self.captures.append(capture)
        return capture

    def make_controller(self, **kwargs):
        controller = SessionController(
            channel_factory=self._channel_factory,
            output_factory=self._output_factory,
            capture_factory=self._capture_factory,
            metrics=session_metrics,
            **kwargs,
        )
        controller.subscribe(self.events.append)
        return controller

    async def start_listening(self, controller, language="Spanish"):
        await controller.start(language)
        channel = self.channels[-1]
        controller.on_channel_open(channel)
        return channel


class TestStart(ControllerTestCase):
    async def test_connecting_then_listening(self):
        controller = self.make_controller()
        await controller.start("Spanish")
        self.assertEqual(controller.state, SessionState.CONNECTING)
        channel = self.channels[0]
        self.assertTrue(channel.connected)
        self.assertEqual(channel.language, "Spanish")
        self.assertEqual(self.outputs[0].sample_rate, 24000)
        self.assertEqual(len(self.captures), 1)

        controller.on_channel_open(channel)
        self.assertEqual(controller.state, SessionState.LISTENING)
        self.assertEqual(session_metrics.get_snapshot()["active_sessions"], 1)
        states = [e["state"] for e in self.events if e["type"] == "state"]
        self.assertEqual(states, ["connecting", "listening"])

    async def test_start_clears_previous_transcript_and_error(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(input_transcription="Hola", turn_complete=True))
        controller.on_channel_error(channel, RuntimeError("boom"))
        self.assertEqual(controller.state, SessionState.ERROR)

        await controller.start("French")
        self.assertIsNone(controller.error)
        self.assertEqual(len(controller.transcript), 0)
        self.assertEqual(controller.language, "French")

    async def test_start_while_active_rejected(self):
        controller = self.make_controller()
        await controller.start("German")
        with self.assertRaises(SessionActiveError):
            await controller.start("German")
        self.assertEqual(len(self.channels), 1)

    async def test_microphone_denied(self):
        self.capture_error = PermissionError("Permission denied")
        controller = self.make_controller()
        await controller.start("Hindi")
        self.assertEqual(controller.state, SessionState.ERROR)
        self.assertEqual(controller.error, "Permission denied")
        self.assertTrue(self.channels[0].closed)
        self.assertEqual(self.outputs[0].state, "closed")
        self.assertEqual(controller.snapshot()["status_text"], "Error: Permission denied")

    async def test_stop_while_microphone_opening_releases_it(self):
        self.capture_gate = asyncio.Event()
        controller = self.make_controller()
        task = asyncio.create_task(controller.start("Arabic"))
        for _ in range(10):
            await asyncio.sleep(0)
        self.assertEqual(controller.state, SessionState.CONNECTING)
        controller.stop()
        self.capture_gate.set()
        await task
        self.assertEqual(controller.state, SessionState.IDLE)
        self.assertTrue(self.captures[0].closed)
        self.assertTrue(self.channels[0].closed)

    async def test_stop_while_output_opening_releases_it(self):
        self.output_gate = asyncio.Event()
        controller = self.make_controller()
        task = asyncio.create_task(controller.start("Arabic"))
        for _ in range(10):
            await asyncio.sleep(0)
        controller.stop()
        self.output_gate.set()
        await task
        self.assertEqual(controller.state, SessionState.IDLE)
        self.assertEqual(self.outputs[0].state, "closed")
        self.assertEqual(self.channels, [])
        self.assertEqual(self.captures, [])

    async def test_frames_go_to_channel_as_pcm_blobs(self):
        controller = self.make_controller()
        await controller.start("Japanese")
        controller.on_audio_frame(self.captures[0], np.full(4096, 0.5, dtype=np.float32))
        blob = self.channels[0].sent[0]
        self.assertEqual(blob.mime_type, "audio/pcm;rate=16000")
        self.assertEqual(len(base64.b64decode(blob.data)), 8192)
        self.assertAlmostEqual(session_metrics.get_snapshot()["captured_seconds"], 0.256)
        # the fake channel writes nothing to a session; only the channel counts real sends
        self.assertEqual(session_metrics.get_snapshot()["frames_sent"], 0)
        self.assertEqual(session_metrics.get_snapshot()["frames_captured"], 1)

    async def test_refused_frame_counts_as_dropped(self):
        controller = self.make_controller()
        await controller.start("Japanese")
        self.channels[0].accept = False
        controller.on_audio_frame(self.captures[0], np.zeros(4096, dtype=np.float32))
        self.assertEqual(session_metrics.get_snapshot()["dropped_frames"], 1)

    async def test_frames_to_closed_channel_not_counted(self):
        controller = self.make_controller()
        await controller.start("Japanese")
        self.channels[0].closed = True
        controller.on_audio_frame(self.captures[0], np.zeros(4096, dtype=np.float32))
        snapshot = session_metrics.get_snapshot()
        self.assertEqual(snapshot["dropped_frames"], 0)
        self.assertEqual(snapshot["frames_captured"], 0)
        self.assertEqual(self.channels[0].sent, [])


class TestMessages(ControllerTestCase):
    async def test_turn_commit_order(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(input_transcription="Ho"))
        controller.on_channel_message(channel, ServerEvent(input_transcription="la"))
        controller.on_channel_message(channel, ServerEvent(output_transcription="Hello"))
        controller.on_channel_message(channel, ServerEvent(turn_complete=True))
        entries = controller.snapshot()["transcript"]
        self.assertEqual([(e["speaker"], e["text"]) for e in entries], [("user", "Hola"), ("ai", "Hello")])
        self.assertEqual(controller.turn.input_text, "")
        self.assertEqual(controller.turn.output_text, "")
        pushed = [e["entry"]["text"] for e in self.events if e["type"] == "transcript"]
        self.assertEqual(pushed, ["Hola", "Hello"])

    async def test_turn_with_only_output(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(output_transcription="Bonjour", turn_complete=True))
        self.assertEqual(len(controller.transcript), 1)

    async def test_audio_chunks_play_back_to_back(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(audio=[pcm_payload(0.1)]))
        controller.on_channel_message(channel, ServerEvent(audio=[pcm_payload(0.2), pcm_payload(0.1)]))
        starts = [s.started_at for s in self.outputs[0].sources]
        self.assertEqual(len(starts), 3)
        self.assertAlmostEqual(starts[0], 0.0)
        self.assertAlmostEqual(starts[1], 0.1)
        self.assertAlmostEqual(starts[2], 0.3)
        self.assertEqual(controller.active_playback_count, 3)
        self.assertAlmostEqual(controller.playback_cursor, 0.4)

    async def test_interruption_flushes_playback(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(audio=[pcm_payload(0.5), pcm_payload(0.5)]))
        controller.on_channel_message(channel, ServerEvent(interrupted=True))
        self.assertEqual(controller.active_playback_count, 0)
        self.assertEqual(controller.playback_cursor, 0.0)
        self.assertTrue(all(s.stopped for s in self.outputs[0].sources))
        self.assertEqual(controller.state, SessionState.LISTENING)
        self.assertEqual(session_metrics.get_snapshot()["interruptions"], 1)

    async def test_malformed_chunk_dropped_by_default(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        bad = base64.b64encode(b"\x00\x01\x02").decode()
        controller.on_channel_message(channel, ServerEvent(audio=[bad, pcm_payload(0.1)]))
        self.assertEqual(controller.state, SessionState.LISTENING)
        self.assertEqual(controller.active_playback_count, 1)
        self.assertEqual(session_metrics.get_snapshot()["decode_failures"], 1)

    async def test_malformed_chunk_escalates_when_configured(self):
        controller = self.make_controller(decode_error_policy="escalate")
        channel = await self.start_listening(controller)
        bad = base64.b64encode(b"\x00\x01\x02").decode()
        controller.on_channel_message(channel, ServerEvent(audio=[pcm_payload(0.1), bad, pcm_payload(0.1)]))
        self.assertEqual(controller.state, SessionState.ERROR)
        self.assertIn("multiple", controller.error)
        self.assertTrue(channel.closed)
        self.assertEqual(controller.active_playback_count, 0)


class TestStop(ControllerTestCase):
    async def test_stop_without_start(self):
        controller = self.make_controller()
        controller.stop()
        controller.stop()
        self.assertEqual(controller.state, SessionState.IDLE)
        self.assertEqual(controller.active_playback_count, 0)
        self.assertEqual(controller.playback_cursor, 0.0)
        self.assertEqual(self.events, [])

    async def test_stop_twice_releases_everything(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(audio=[pcm_payload(0.3)]))
        controller.stop()
        controller.stop()
        self.assertEqual(controller.state, SessionState.IDLE)
        self.assertTrue(channel.closed)
        self.assertTrue(self.captures[0].closed)
        self.assertEqual(self.outputs[0].state, "closed")
        self.assertEqual(controller.active_playback_count, 0)
        self.assertEqual(controller.playback_cursor, 0.0)
        self.assertEqual(session_metrics.get_snapshot()["active_sessions"], 0)

    async def test_stop_from_error(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_error(channel, RuntimeError("socket reset"))
        controller.stop()
        self.assertEqual(controller.state, SessionState.IDLE)


class TestErrorPath(ControllerTestCase):
    async def test_error_after_open_releases_resources(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_message(channel, ServerEvent(audio=[pcm_payload(0.2)]))
        controller.on_channel_error(channel, RuntimeError("socket reset"))

        self.assertEqual(controller.state, SessionState.ERROR)
        self.assertEqual(controller.error, "socket reset")
        self.assertEqual(controller.active_playback_count, 0)
        self.assertEqual(controller.playback_cursor, 0.0)
        self.assertTrue(channel.closed)
        self.assertTrue(self.captures[0].closed)
        self.assertEqual(self.outputs[0].state, "closed")
        self.assertEqual(session_metrics.get_snapshot()["session_errors"], 1)
        self.assertIn({"type": "error", "message": "socket reset"}, self.events)

    async def test_no_callbacks_after_error(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_error(channel, RuntimeError("socket reset"))
        controller.on_channel_message(channel, ServerEvent(input_transcription="late", turn_complete=True, audio=[pcm_payload(0.1)]))
        controller.on_channel_open(channel)
        controller.on_audio_frame(self.captures[0], np.zeros(4096, dtype=np.float32))
        self.assertEqual(controller.state, SessionState.ERROR)
        self.assertEqual(len(controller.transcript), 0)
        self.assertEqual(channel.sent, [])
        self.assertEqual(self.outputs[0].sources, [])

    async def test_unexpected_close_is_an_error(self):
        controller = self.make_controller()
        channel = await self.start_listening(controller)
        controller.on_channel_close(channel, CloseInfo(code=1011))
        self.assertEqual(controller.state, SessionState.ERROR)
        self.assertEqual(controller.error, "Connection closed: 1011")
        self.assertTrue(channel.closed)

    async def test_stale_channel_ignored_after_restart(self):
        controller = self.make_controller()
        old = await self.start_listening(controller)
        controller.stop()
        await controller.start("Turkish")
        controller.on_channel_error(old, RuntimeError("old socket"))
        self.assertEqual(controller.state, SessionState.CONNECTING)
        controller.on_channel_open(self.channels[-1])
        self.assertEqual(controller.state, SessionState.LISTENING)

    async def test_listener_failure_does_not_break_session(self):
        controller = self.make_controller()

        def broken(_event):
            raise RuntimeError("listener bug")

        controller.subscribe(broken)
        channel = await self.start_listening(controller)
        self.assertEqual(controller.state, SessionState.LISTENING)
        controller.unsubscribe(broken)
        controller.on_channel_message(channel, ServerEvent(input_transcription="Hi", turn_complete=True))
        self.assertEqual(len(controller.transcript), 1)


if __name__ == "__main__":
    unittest.main()
