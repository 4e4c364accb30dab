"""Tests for export coalescing, ordered fan-out, cancellation and cleanup."""

import asyncio
import os

import pytest

from conftest import CallbackRecorder, RecordingSink
from ogrexport.services.export_errors import ColumnIntrospectionError, ProcessTimeoutError
from ogrexport.services.export_formats import CSV, GEOPACKAGE, KML, SPATIALITE


async def _finish(job):
    await asyncio.wait_for(job.task, timeout=5)


@pytest.mark.asyncio
async def test_identical_requests_share_one_run(export_service, process_runner, make_options):
    sinks = [RecordingSink(f"r{i}") for i in range(5)]
    callbacks = [CallbackRecorder() for _ in sinks]

    jobs = [
        export_service.send_response(CSV, make_options(sink), cb)
        for sink, cb in zip(sinks, callbacks)
    ]

    assert all(job is jobs[0] for job in jobs)
    assert len(export_service.registry) == 1
    await _finish(jobs[0])

    assert len(process_runner.calls) == 1
    for sink, cb in zip(sinks, callbacks):
        assert bytes(sink.data) == process_runner.content
        assert cb.calls == [None]


@pytest.mark.asyncio
async def test_different_parameters_bake_separately(export_service, process_runner, make_options):
    a = export_service.send_response(CSV, make_options(RecordingSink()), CallbackRecorder())
    b = export_service.send_response(CSV, make_options(RecordingSink(), skipfields=["name"]), CallbackRecorder())
    c = export_service.send_response(GEOPACKAGE, make_options(RecordingSink()), CallbackRecorder())

    assert len({id(a), id(b), id(c)}) == 3
    await export_service.wait_idle()

    assert len(process_runner.calls) == 3


@pytest.mark.asyncio
async def test_requests_drained_in_arrival_order(export_service, process_runner, make_options):
    process_runner.content = b"x" * 40
    events = []
    sinks = [RecordingSink(name, events=events) for name in ("r1", "r2", "r3")]

    job = None
    for sink in sinks:
        job = export_service.send_response(CSV, make_options(sink), CallbackRecorder())
    await _finish(job)

    assert events == [
        ("start", "r1"), ("end", "r1"),
        ("start", "r2"), ("end", "r2"),
        ("start", "r3"), ("end", "r3"),
    ]


@pytest.mark.asyncio
async def test_callbacks_fire_in_order_before_next_transfer(export_service, make_options):
    events = []

    def callback_for(name):
        def _cb(error):
            events.append(("callback", name))
        return _cb

    job = None
    for name in ("r1", "r2"):
        job = export_service.send_response(CSV, make_options(RecordingSink(name, events=events)), callback_for(name))
    await _finish(job)

    assert events.index(("callback", "r1")) < events.index(("start", "r2"))
    assert events[-1] == ("callback", "r2")


@pytest.mark.asyncio
async def test_canceled_request_is_skipped_and_siblings_unaffected(export_service, process_runner, make_options):
    process_runner.gate = asyncio.Event()
    sinks = [RecordingSink(name) for name in ("r1", "r2", "r3")]
    callbacks = [CallbackRecorder() for _ in sinks]

    job = None
    for sink, cb in zip(sinks, callbacks):
        job = export_service.send_response(CSV, make_options(sink), cb)

    sinks[1].close()
    process_runner.gate.set()
    await _finish(job)

    assert callbacks[1].calls == []
    assert sinks[1].writes == 0
    for i in (0, 2):
        assert bytes(sinks[i].data) == process_runner.content
        assert callbacks[i].calls == [None]


@pytest.mark.asyncio
async def test_cancel_mid_transfer_does_not_stall_queue(export_service, process_runner, make_options):
    process_runner.content = b"y" * 64
    quitter = RecordingSink("r1", close_after_writes=1)
    stayer = RecordingSink("r2")
    quitter_cb, stayer_cb = CallbackRecorder(), CallbackRecorder()

    export_service.send_response(CSV, make_options(quitter), quitter_cb)
    job = export_service.send_response(CSV, make_options(stayer), stayer_cb)
    await _finish(job)

    assert quitter.writes == 1
    assert quitter_cb.calls == []
    assert bytes(stayer.data) == process_runner.content
    assert stayer_cb.calls == [None]


@pytest.mark.asyncio
async def test_transfer_error_is_local_to_one_request(export_service, process_runner, make_options):
    broken = RecordingSink("r1", write_error=ConnectionResetError("reset"))
    healthy = RecordingSink("r2")
    broken_cb, healthy_cb = CallbackRecorder(), CallbackRecorder()

    export_service.send_response(CSV, make_options(broken), broken_cb)
    job = export_service.send_response(CSV, make_options(healthy), healthy_cb)
    await _finish(job)

    assert isinstance(broken_cb.calls[0], ConnectionResetError)
    assert healthy_cb.calls == [None]
    assert bytes(healthy.data) == process_runner.content


@pytest.mark.asyncio
async def test_job_error_broadcast_to_all(export_service, process_runner, query_runner, make_options):
    query_runner.columns_error = RuntimeError("syntax error at or near \"FORM\"")
    sinks = [RecordingSink(name) for name in ("r1", "r2")]
    callbacks = [CallbackRecorder() for _ in sinks]

    job = None
    for sink, cb in zip(sinks, callbacks):
        job = export_service.send_response(CSV, make_options(sink), cb)
    await _finish(job)

    assert process_runner.calls == []
    for sink, cb in zip(sinks, callbacks):
        assert len(cb.calls) == 1
        assert isinstance(cb.calls[0], ColumnIntrospectionError)
        assert sink.writes == 0
    assert len(export_service.registry) == 0


@pytest.mark.asyncio
async def test_timeout_error_broadcast(export_service, process_runner, make_options):
    process_runner.error = ProcessTimeoutError()
    cb = CallbackRecorder()

    job = export_service.send_response(CSV, make_options(RecordingSink(), timeout_ms=100), cb)
    await _finish(job)

    assert str(cb.calls[0]) == "statement timeout"


@pytest.mark.asyncio
async def test_artifact_removed_and_job_forgotten_after_drain(export_service, process_runner, make_options):
    job = export_service.send_response(CSV, make_options(RecordingSink()), CallbackRecorder())
    path = job.artifact_path
    await _finish(job)

    assert job.result_path == path
    assert not os.path.exists(path)
    assert len(export_service.registry) == 0


@pytest.mark.asyncio
async def test_new_request_after_drain_bakes_again(export_service, process_runner, make_options):
    first = export_service.send_response(CSV, make_options(RecordingSink()), CallbackRecorder())
    await _finish(first)
    second = export_service.send_response(CSV, make_options(RecordingSink()), CallbackRecorder())
    await _finish(second)

    assert second is not first
    assert len(process_runner.calls) == 2


@pytest.mark.asyncio
async def test_request_joining_while_draining_is_served(export_service, process_runner, make_options):
    process_runner.content = b"z" * 32
    late_sink = RecordingSink("late")
    late_cb = CallbackRecorder()

    def first_cb(error):
        export_service.send_response(CSV, make_options(late_sink), late_cb)

    job = export_service.send_response(CSV, make_options(RecordingSink("early")), first_cb)
    await _finish(job)

    assert len(process_runner.calls) == 1
    assert bytes(late_sink.data) == process_runner.content
    assert late_cb.calls == [None]


@pytest.mark.asyncio
async def test_format_args_precede_caller_args(export_service, process_runner, make_options):
    job = export_service.send_response(
        SPATIALITE,
        make_options(RecordingSink(), cmd_params=["-lco", "FORMAT=SPATIALITE"]),
        CallbackRecorder(),
    )
    await _finish(job)

    args = process_runner.calls[0]
    assert args[-6:] == ["-dsco", "SPATIALITE=yes", "-lco", "FORMAT=SPATIALITE", "-nln", "places"]
    assert args[2] == "SQLite"
    assert job.artifact_path.endswith(":cartodb-query.sqlite")


def test_get_key_uses_format_and_definition(export_service, make_options):
    opts = make_options(RecordingSink(), gn="the_geom", skipfields=["a"])

    key = export_service.get_key(CSV, opts)

    assert key.startswith("csv:exports_test:exporter:the_geom:")
    assert key.endswith(":a")
    assert export_service.get_key(CSV, make_options(RecordingSink(), gn="the_geom", skipfields=["a"])) == key


@pytest.mark.parametrize(
    "limit, requested, expected",
    [
        (100, None, 100),
        (100, 0, 100),
        (100, 50, 50),
        (100, 5000, 100),
        (0, None, 0),
        (0, 250, 250),
    ],
)
def test_request_timeout_only_tightens_server_limit(export_service, limit, requested, expected):
    export_service.default_timeout_ms = limit

    assert export_service.effective_timeout_ms(requested) == expected


@pytest.mark.asyncio
async def test_zero_request_timeout_keeps_server_limit(export_service, process_runner, make_options):
    export_service.default_timeout_ms = 100

    job = export_service.send_response(CSV, make_options(RecordingSink(), timeout_ms=0), CallbackRecorder())
    await _finish(job)

    assert process_runner.timeouts == [100]


@pytest.mark.asyncio
async def test_only_csv_projection_is_cast_to_text(export_service, process_runner, make_options):
    csv_job = export_service.send_response(CSV, make_options(RecordingSink()), CallbackRecorder())
    kml_job = export_service.send_response(KML, make_options(RecordingSink()), CallbackRecorder())
    await _finish(csv_job)
    await _finish(kml_job)

    projections = {call[2]: call[call.index("-sql") + 1] for call in process_runner.calls}
    assert projections["CSV"].startswith('SELECT "cartodb_id"::text,"name"::text FROM')
    assert projections["KML"].startswith('SELECT "cartodb_id","name" FROM')
