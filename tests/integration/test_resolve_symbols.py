"""
End-to-end symbol resolution against the in-process gateway.

Exercises the real session, ib_async client, multiplexer and probe
automaton together, plus the resolve_symbols script.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib.util
import sys
from pathlib import Path

import pytest
from ib_async import Contract, ContractDetails

from ibmux.gateway.messages import (
    CancelMarketData,
    ContractDataEnd,
    ErrorMessage,
    RequestContractData,
)
from ibmux.gateway.session import GatewaySession
from ibmux.symbols import ProbeState, Symbols, SymbolSeed


pytestmark = pytest.mark.integration

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "resolve_symbols.py"

# (symbol, security type) -> contract IDs the gateway knows
KNOWN = {
    ("AAPL", "STK"): [265598],
    ("SPX", "IND"): [416904],
    ("ES", "FUT"): [495512551, 495512552],
}


class Resolver:
    """
    Gateway responder for KNOWN.

    Contract details are handed to the attached session's client callbacks
    directly; the end marker and errors travel over the socket.
    """

    def __init__(self) -> None:
        self.session: GatewaySession | None = None

    def __call__(self, request):
        if not isinstance(request, RequestContractData):
            return
        contract_ids = KNOWN.get((request.symbol, request.security_type))
        if contract_ids is None:
            yield ErrorMessage(
                request_id=request.id, error_code=200, message="No security definition"
            )
            return
        if self.session is not None:
            for contract_id in contract_ids:
                contract = Contract(
                    conId=contract_id,
                    symbol=request.symbol,
                    secType=request.security_type,
                    exchange=request.exchange,
                )
                self.session._wrapper.contractDetails(
                    request.id, ContractDetails(contract=contract)
                )
        yield ContractDataEnd(request_id=request.id)


def load_script():
    spec = importlib.util.spec_from_file_location("resolve_symbols", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def script_args(path: Path, port: int, timeout: float, dump: bool = False) -> argparse.Namespace:
    return argparse.Namespace(
        path=str(path),
        host="127.0.0.1",
        port=port,
        client_id=0,
        timeout=timeout,
        dump=dump,
        verbose=False,
    )


class TestResolve:
    """Tests for resolution over a real socket."""

    @pytest.mark.asyncio
    async def test_probes_until_resolved(self, fake_gateway) -> None:
        """Each symbol settles on the first security type the gateway knows."""
        resolver = Resolver()
        async with fake_gateway(resolver) as gw:
            async with GatewaySession(gw.config()) as session:
                resolver.session = session
                symbols = Symbols.from_seeds(
                    session, [SymbolSeed("AAPL"), SymbolSeed("SPX"), SymbolSeed("ES")]
                )
                try:
                    assert await symbols.wait(timeout=2.0) is True
                    aapl, spx, es = symbols.symbols()
                    assert [c.contract_id for c in aapl.data] == [265598]
                    assert [c.security_type for c in spx.data] == ["IND"]
                    assert len(es.data) == 2
                    assert all(sym.state is ProbeState.DONE for sym in symbols)
                    assert all(sym.valid for sym in symbols)
                finally:
                    await symbols.cleanup()

            # 1 + 2 + 3 probes, then one cancel per symbol
            requests = [await gw.next_request() for _ in range(9)]
            probes = [r for r in requests if isinstance(r, RequestContractData)]
            cancels = [r for r in requests if isinstance(r, CancelMarketData)]
            assert len(probes) == 6
            assert len(cancels) == 3
            assert len({r.id for r in probes}) == 6

    @pytest.mark.asyncio
    async def test_unknown_symbol_times_out(self, fake_gateway) -> None:
        """A symbol nobody knows exhausts its probes and readiness never fires."""
        resolver = Resolver()
        async with fake_gateway(resolver) as gw:
            async with GatewaySession(gw.config()) as session:
                resolver.session = session
                symbols = Symbols.from_seeds(session, [SymbolSeed("AAPL"), SymbolSeed("NOPE")])
                try:
                    assert await symbols.wait(timeout=0.3) is False
                    assert symbols.lookup("AAPL").valid
                    assert symbols.lookup("NOPE").state is ProbeState.EXHAUSTED
                finally:
                    await symbols.cleanup()

    @pytest.mark.asyncio
    async def test_account_push_during_resolution(self, fake_gateway) -> None:
        """Account updates arriving mid-resolution do not end the session."""
        resolver = Resolver()
        async with fake_gateway(resolver) as gw:
            async with GatewaySession(gw.config()) as session:
                resolver.session = session
                await gw.push_fields([15, 1, "DU123456"])
                symbols = Symbols.from_seeds(session, [SymbolSeed("AAPL")])
                try:
                    assert await symbols.wait(timeout=1.0) is True
                finally:
                    await symbols.cleanup()
                assert session.is_running

    @pytest.mark.asyncio
    async def test_gateway_drop_leaves_symbols_pending(self, fake_gateway) -> None:
        """Losing the connection ends the session; waiting times out."""
        async with fake_gateway() as gw:
            session = await GatewaySession.connect(gw.config())
            symbols = Symbols.from_seeds(session, [SymbolSeed("AAPL")])

            waiter = asyncio.create_task(symbols.wait(timeout=0.3))
            await gw.next_request()
            await gw.disconnect()

            assert await waiter is False
            assert not session.is_running
            await symbols.cleanup()
            await session.stop()


class TestScript:
    """Tests for scripts/resolve_symbols.py."""

    @pytest.mark.asyncio
    async def test_resolve(self, fake_gateway, tmp_path, capsys) -> None:
        """The script prints one line per symbol and exits 0."""
        path = tmp_path / "symbols.txt"
        path.write_text("# test\nAAPL\nES\n", encoding="utf-8")
        script = load_script()

        async with fake_gateway(Resolver()) as gw:
            args = script_args(path, gw.port, timeout=2.0, dump=True)
            with pytest.warns(UserWarning, match="Non-standard port"):
                config = script.build_config(args)
            code = await script.resolve(args, config)

        out = capsys.readouterr().out
        assert code == 0
        assert "AAPL" in out and "ES" in out
        assert out.count("done") == 2

    @pytest.mark.asyncio
    async def test_resolve_timeout(self, fake_gateway, tmp_path, capsys) -> None:
        """Unresolvable symbols make the script exit 1."""
        path = tmp_path / "symbols.txt"
        path.write_text("NOPE\n", encoding="utf-8")
        script = load_script()

        async with fake_gateway(Resolver()) as gw:
            args = script_args(path, gw.port, timeout=0.3)
            with pytest.warns(UserWarning):
                config = script.build_config(args)
            code = await script.resolve(args, config)

        out = capsys.readouterr().out
        assert code == 1
        assert "exhausted" in out
        assert "Timed out" in out

    def test_invalid_configuration(self, tmp_path, monkeypatch, capsys) -> None:
        """A bad client ID is reported as a configuration error, not a symbol file error."""
        path = tmp_path / "symbols.txt"
        path.write_text("AAPL\n", encoding="utf-8")
        script = load_script()
        monkeypatch.setattr(
            sys, "argv", ["resolve_symbols.py", str(path), "--client-id", "1000"]
        )

        assert script.main() == 2
        err = capsys.readouterr().err
        assert "Invalid configuration" in err
        assert "client_id must be <= 999" in err
        assert "Cannot read symbols" not in err
