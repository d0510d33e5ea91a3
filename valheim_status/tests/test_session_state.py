import unittest

from valheim_status.session_state import SessionStateEngine

MINUTE_MS = 60 * 1000


class SessionStateEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = SessionStateEngine(
            pending_ttl_ms=2 * MINUTE_MS,
            player_seen_ttl_ms=10 * MINUTE_MS,
            attempts_keep=30,
            clock=lambda: 0,
        )

    def _join(self, steam_id: str, name: str, start_ms: int) -> None:
        self.engine.ingest(f"Got connection SteamID {steam_id}", start_ms)
        self.engine.ingest(f"Got handshake from client {steam_id}", start_ms + 1000)
        self.engine.ingest(f"Got character ZDOID from {name} : {steam_id[-3:]}:1", start_ms + 2000)

    def test_full_join_creates_online_player(self) -> None:
        self.engine.ingest("Got connection SteamID 123", 1_000)
        self.engine.ingest("Got handshake from client 123", 2_000)
        self.engine.ingest("Got character ZDOID from Alice : 123:1", 3_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 1)
        self.assertEqual(snap.players[0].name, "Alice")
        self.assertEqual(snap.players[0].steamId, "123")
        self.assertEqual(snap.players[0].connectedMs, 1_000)
        self.assertEqual(snap.players[0].lastSeenMs, 3_000)
        self.assertEqual(snap.players[0].lastEvent, "in_world")
        self.assertEqual(snap.pending, [])

    def test_handshake_updates_pending_stage(self) -> None:
        self.engine.ingest("Got connection SteamID 555", 1_000)
        self.engine.ingest("Got handshake from client 555", 4_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(len(snap.pending), 1)
        self.assertEqual(snap.pending[0].stage, "handshake")
        self.assertEqual(snap.pending[0].firstSeenMs, 1_000)
        self.assertEqual(snap.pending[0].lastSeenMs, 4_000)

    def test_wrong_password_drops_pending_into_attempts(self) -> None:
        self.engine.ingest("Got connection SteamID 42", 1_000)
        self.engine.ingest("Peer 42 has wrong password", 2_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.pending, [])
        self.assertEqual(snap.playersOnline, 0)
        latest = snap.recentAttempts[0]
        self.assertEqual(latest.type, "wrong_password")
        self.assertEqual(latest.steamId, "42")
        self.assertEqual(latest.detail, "Rejected at password prompt")
        self.assertEqual(latest.line, "Peer 42 has wrong password")

    def test_wrong_password_marks_known_player_offline(self) -> None:
        self._join("76561198000000001", "Bjorn", 1_000)
        self.engine.ingest("Peer 76561198000000001 has wrong password", 10_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 0)
        self.assertEqual(snap.recentAttempts[0].type, "wrong_password")

    def test_character_binds_most_recently_active_pending(self) -> None:
        self.engine.ingest("Got connection SteamID 111", 1_000)
        self.engine.ingest("Got connection SteamID 222", 2_000)
        # 111 is touched last, so it wins even though it was inserted first.
        self.engine.ingest("Got handshake from client 111", 3_000)
        self.engine.ingest("Got character ZDOID from Freya : 1:1", 4_000)

        snap = self.engine.get_snapshot()
        self.assertEqual([p.steamId for p in snap.players], ["111"])
        self.assertEqual([p.steamId for p in snap.pending], ["222"])

    def test_character_without_pending_creates_placeholder_player(self) -> None:
        self.engine.ingest("Got character ZDOID from Ghost : 9:1", 5_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 1)
        self.assertEqual(snap.players[0].steamId, "unknown:Ghost")
        self.assertEqual(snap.players[0].name, "Ghost")
        self.assertEqual(snap.players[0].connectedMs, 5_000)

    def test_closing_socket_while_pending_records_disconnect_before_join(self) -> None:
        self.engine.ingest("Got connection SteamID 77", 1_000)
        self.engine.ingest("Got handshake from client 77", 2_000)
        self.engine.ingest("Closing socket 77", 3_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.pending, [])
        self.assertEqual(snap.recentAttempts[0].type, "disconnect_before_join")
        self.assertEqual(snap.recentAttempts[0].detail, "Closed before join (stage=handshake)")

    def test_closing_socket_for_player_marks_offline(self) -> None:
        self._join("900", "Sigrid", 1_000)
        self.engine.ingest("Closing socket 900", 20_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 0)
        self.assertEqual(snap.recentAttempts, [])

    def test_closing_socket_for_unknown_id_is_ignored(self) -> None:
        self.engine.ingest("Closing socket 31337", 1_000)
        snap = self.engine.get_snapshot()
        self.assertEqual(snap.recentAttempts, [])
        self.assertEqual(snap.lastSeenMs, 1_000)

    def test_peer_disconnected_marks_player_offline(self) -> None:
        self._join("501", "Ulf", 1_000)
        self.engine.ingest("Peer 501 disconnected", 9_000)
        self.assertEqual(self.engine.get_snapshot().playersOnline, 0)

    def test_generic_disconnect_does_not_flip_players(self) -> None:
        self._join("601", "Astrid", 1_000)
        self.engine.ingest("RPC_Disconnect", 5_000)
        self.engine.ingest("Socket closed by peer", 6_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 1)
        self.assertEqual(snap.lastSeenMs, 6_000)

    def test_pending_timeout_on_unrelated_line(self) -> None:
        self.engine.ingest("Got connection SteamID 808", 0)
        self.engine.ingest("some unrelated chatter", 2 * MINUTE_MS + 1)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.pending, [])
        self.assertEqual(snap.recentAttempts[0].type, "pending_timeout")
        self.assertEqual(snap.recentAttempts[0].detail, "Pending TTL exceeded (stage=connected)")
        self.assertIsNone(snap.recentAttempts[0].line)

    def test_pending_survives_exactly_at_ttl(self) -> None:
        self.engine.ingest("Got connection SteamID 808", 0)
        self.engine.ingest("noise", 2 * MINUTE_MS)
        self.assertEqual(len(self.engine.get_snapshot().pending), 1)

    def test_stale_player_marked_offline_not_removed(self) -> None:
        self._join("700", "Hilda", 0)
        self.engine.ingest("noise", 2_000 + 10 * MINUTE_MS + 1)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 0)
        player = self.engine.get_player("700")
        self.assertIsNotNone(player)
        self.assertFalse(player.online)
        self.assertEqual(player.name, "Hilda")
        self.assertEqual(player.lastEvent, "stale_timeout")
        self.assertEqual(player.lastSeenMs, 2_000)

    def test_get_player_returns_detached_copy(self) -> None:
        self._join("123", "Alice", 1_000)
        player = self.engine.get_player("123")
        player.online = False
        self.assertTrue(self.engine.get_player("123").online)
        self.assertIsNone(self.engine.get_player("999"))

    def test_attempt_history_is_bounded_fifo(self) -> None:
        engine = SessionStateEngine(attempts_keep=3, clock=lambda: 0)
        for index in range(5):
            engine.ingest(f"Peer {index} has wrong password", 1_000 + index)

        attempts = engine.get_snapshot().recentAttempts
        self.assertEqual(len(attempts), 3)
        self.assertEqual([a.steamId for a in attempts], ["4", "3", "2"])

    def test_server_markers(self) -> None:
        self.engine.ingest("02/17/2026 20:00:00: Valheim version: 0.219.16 (network version 33)", 1_000)
        self.engine.ingest("Load world: Midgard (Midgard)", 2_000)
        self.engine.ingest("Opened Steam server", 3_000)
        self.engine.ingest("Game server connected", 4_000)
        self.engine.ingest("Registering lobby", 5_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.serverVersion.version, "0.219.16")
        self.assertEqual(snap.serverVersion.network, "33")
        self.assertEqual(snap.world, "Midgard")
        self.assertTrue(snap.serverReadyFromLog)
        self.assertEqual(snap.readyMs, 4_000)
        self.assertEqual(snap.firstSeenMs, 1_000)
        self.assertEqual(snap.lastSeenMs, 5_000)
        self.assertEqual(snap.lastLine, "Registering lobby")

    def test_blank_and_malformed_lines_are_safe(self) -> None:
        self.assertIsNone(self.engine.ingest("   ", 1_000))
        self.assertIsNone(self.engine.ingest(None, 1_000))
        self.engine.ingest("\x00\xff garbage Got connection SteamID", 2_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.pending, [])
        self.assertEqual(snap.firstSeenMs, 2_000)

    def test_embedded_timestamp_used_when_caller_omits_time(self) -> None:
        self.engine.ingest("02/17/2026 20:08:01: Got connection SteamID 314")
        pending = self.engine.get_snapshot().pending[0]
        self.assertGreater(pending.firstSeenMs, 0)

    def test_clock_used_without_any_timestamp(self) -> None:
        engine = SessionStateEngine(clock=lambda: 12_345)
        engine.ingest("Got connection SteamID 1")
        self.assertEqual(engine.get_snapshot().pending[0].firstSeenMs, 12_345)

    def test_timestamps_never_move_backwards(self) -> None:
        self.engine.ingest("Got connection SteamID 1", 5_000)
        self.engine.ingest("Got handshake from client 1", 4_000)
        pending = self.engine.get_snapshot().pending[0]
        self.assertEqual(pending.lastSeenMs, 5_000)

    def test_reconnect_supersedes_online_session(self) -> None:
        self._join("321", "Leif", 1_000)
        self.engine.ingest("Got connection SteamID 321", 30_000)

        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 0)
        self.assertEqual([p.steamId for p in snap.pending], ["321"])

        self.engine.ingest("Got character ZDOID from Leif : 321:2", 31_000)
        snap = self.engine.get_snapshot()
        self.assertEqual(snap.playersOnline, 1)
        self.assertEqual(snap.players[0].connectedMs, 30_000)
        self.assertEqual(snap.pending, [])

    def test_snapshot_is_idempotent_and_detached(self) -> None:
        self._join("123", "Alice", 1_000)
        first = self.engine.get_snapshot()
        second = self.engine.get_snapshot()
        self.assertEqual(first, second)

        first.players[0].name = "Mallory"
        first.players.clear()
        self.assertEqual(self.engine.get_snapshot().players[0].name, "Alice")

    def test_snapshot_sorts_by_last_seen_descending(self) -> None:
        self._join("100", "Early", 1_000)
        self._join("200", "Late", 10_000)

        snap = self.engine.get_snapshot()
        self.assertEqual([p.name for p in snap.players], ["Late", "Early"])

    def test_reset_clears_everything(self) -> None:
        self.engine.ingest("Opened Steam server", 1_000)
        self.engine.ingest("Game server connected", 1_500)
        self._join("123", "Alice", 2_000)
        self.engine.ingest("Peer 9 has wrong password", 6_000)

        self.engine.reset()
        snap = self.engine.get_snapshot()
        self.assertFalse(snap.serverReadyFromLog)
        self.assertIsNone(snap.readyMs)
        self.assertIsNone(snap.lastSeenMs)
        self.assertEqual(snap.players, [])
        self.assertEqual(snap.recentAttempts, [])


if __name__ == "__main__":
    unittest.main()
