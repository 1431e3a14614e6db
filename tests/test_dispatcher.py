import pytest

from mcsci.extensions.demo import DemoExtension
from mcsci.protocol.errors import DispatchError, UnknownExtension
from mcsci.server.dispatcher import ExtensionDispatcher
from mcsci.server.sink import ResponseSink


def _dispatcher():
    d = ExtensionDispatcher()
    for name in ("a", "b"):
        ext = DemoExtension({"name": name})
        d.register_extension(ext.describe(), ext)
    return d


def _sink():
    out = []
    return ResponseSink(lambda s: out.append(s.rstrip("\n"))), out


def test_ids_follow_registration_order():
    d = _dispatcher()
    assert [x.name for x in d.descriptors()] == ["a", "b"]
    assert d.get(1).options["name"] == "b"
    with pytest.raises(UnknownExtension):
        d.get(2)
    assert d.types_for(0)
    assert d.types_for(5) is None
    assert d.types_for(None) is None


def test_job_splits_multiline_chunks_and_releases():
    d = _dispatcher()
    sink, out = _sink()
    job = d.dispatch(0, 3, "echo x", sink)
    assert d.active == {3: 0}
    assert out == []
    job.start()
    assert d.wait_idle(timeout=5.0)
    assert out == ["extension-response 3 x"]
    assert d.active == {}


def test_rejected_dispatch_does_not_reserve_usage_id():
    d = _dispatcher()
    sink, _ = _sink()
    with pytest.raises(DispatchError) as exc:
        d.dispatch(0, 1, "repeat lots", sink)
    assert exc.value.parse_failure
    with pytest.raises(DispatchError) as exc:
        d.dispatch(0, 1, "unknown", sink)
    assert not exc.value.parse_failure
    with pytest.raises(UnknownExtension):
        d.dispatch(9, 1, "echo", sink)
    assert d.active == {}


def test_same_usage_id_rejected_until_released():
    d = _dispatcher()
    sink, _ = _sink()
    d.dispatch(0, 7, "echo first", sink)
    with pytest.raises(DispatchError, match="already active"):
        d.dispatch(1, 7, "echo second", sink)
    d.release(7)
    d.dispatch(1, 7, "echo second", sink)
    assert d.active == {7: 1}
