from relay.session.models import (
    SYSTEM_AUTHOR,
    ConnectionBinding,
    LogEntry,
    LogEntryType,
    PlayerRecord,
    Session,
    to_millis,
)
from relay.tests.mocks import MockConnection


def _session() -> Session:
    return Session(id="rinascimento-abc123", created_at=1000.0, last_activity=1000.0)


class TestPlayerRecord:
    def test_merge_character_keeps_absent_keys(self):
        record = PlayerRecord(id="p1", name="Caterina")
        record.merge_character({"forza": 3, "agilita": 2})
        record.merge_character({"forza": 4})
        assert record.character == {"forza": 4, "agilita": 2}

    def test_merge_character_into_empty_sheet(self):
        record = PlayerRecord(id="p1", name="Caterina")
        record.merge_character({"forza": 3})
        assert record.character == {"forza": 3}

    def test_apply_fields_overwrites_profile(self):
        record = PlayerRecord(id="p1", name="Caterina")
        record.apply_fields({"name": "Cate", "characterName": "Sforza", "avatar": "lupo.png"})
        assert record.name == "Cate"
        assert record.character_name == "Sforza"
        assert record.extra == {"avatar": "lupo.png"}

    def test_apply_fields_ignores_identity_and_role(self):
        record = PlayerRecord(id="p1", name="Caterina")
        record.apply_fields({"id": "hijack", "isMaster": True, "online": False, "joinedAt": 0})
        assert record.id == "p1"
        assert record.is_master is False
        assert record.online is True
        assert record.extra == {}

    def test_apply_fields_replaces_character_only_with_a_map(self):
        record = PlayerRecord(id="p1", name="Caterina", character={"forza": 1})
        record.apply_fields({"character": "not a sheet"})
        assert record.character == {"forza": 1}
        record.apply_fields({"character": {"agilita": 5}})
        assert record.character == {"agilita": 5}

    def test_to_info_serializes_camel_case_with_extras(self):
        record = PlayerRecord(id="p1", name="Caterina", character_name="Sforza", joined_at=12.5)
        record.apply_fields({"avatar": "lupo.png"})
        dumped = record.to_info().model_dump()
        assert dumped["characterName"] == "Sforza"
        assert dumped["isMaster"] is False
        assert dumped["joinedAt"] == 12500
        assert dumped["avatar"] == "lupo.png"


class TestSession:
    def test_claim_master_sets_role_and_id(self):
        session = _session()
        record = PlayerRecord(id="gm", name="Lorenzo")
        session.add_player(record)
        session.claim_master(record)
        assert session.master_id == "gm"
        assert session.live_master() is record

    def test_claim_master_demotes_previous_holder(self):
        session = _session()
        old = PlayerRecord(id="gm1", name="Lorenzo")
        new = PlayerRecord(id="gm2", name="Giuliano")
        session.add_player(old)
        session.add_player(new)
        session.claim_master(old)
        old.online = False

        session.claim_master(new)

        assert old.is_master is False
        assert new.is_master is True
        assert session.master_id == "gm2"

    def test_offline_master_is_not_live(self):
        session = _session()
        record = PlayerRecord(id="gm", name="Lorenzo")
        session.add_player(record)
        session.claim_master(record)
        record.online = False
        assert session.live_master() is None
        assert session.master_name == "Lorenzo"

    def test_stale_master_id_is_cleared(self):
        session = _session()
        session.master_id = "ghost"
        assert session.live_master() is None
        assert session.master_id is None

    def test_presence_counts(self):
        session = _session()
        assert session.all_offline
        session.add_player(PlayerRecord(id="p1", name="a"))
        session.add_player(PlayerRecord(id="p2", name="b", online=False))
        assert session.online_count == 1
        assert session.total_players == 2
        assert not session.all_offline

    def test_log_info_preserves_order(self):
        session = _session()
        for i in range(3):
            session.append_log(LogEntry(timestamp=float(i), type=LogEntryType.DICE_ROLL, content=str(i), data={}))
        assert [e.content for e in session.get_log_info()] == ["0", "1", "2"]
        assert session.get_log_info()[0].author == SYSTEM_AUTHOR


class TestConnectionBinding:
    def test_new_binding_is_unbound(self):
        binding = ConnectionBinding(connection=MockConnection("c1"))
        assert binding.connection_id == "c1"
        assert binding.session_id is None
        assert not binding.has_player

    def test_bind_and_unbind_player(self):
        binding = ConnectionBinding(connection=MockConnection())
        binding.bind_player("s1", "p1", is_master=True)
        assert binding.has_player
        assert binding.is_master is True

        binding.unbind_player()
        assert binding.session_id == "s1"
        assert not binding.has_player
        assert binding.is_master is None


def test_to_millis_truncates():
    assert to_millis(1.2345) == 1234
