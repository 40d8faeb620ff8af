"""Tests for the flow ledger — proves split, merge, cancel and sweep invariants."""

import random
from dataclasses import replace

import pytest
from web3 import Web3

from patronage.config import LedgerConfig, LedgerSettings
from patronage.errors import InvariantViolation
from patronage.flows.ledger import FlowLedger
from patronage.models.flow import FlowPlanKind, ZERO_ADDRESS
from patronage.substrate.streams import InMemoryStreamSubstrate


def _addr(tag: int) -> str:
    return Web3.to_checksum_address("0x" + f"{tag:02x}" * 20)


LEDGER = _addr(0x1E)
S1, S2, S3 = _addr(0x51), _addr(0x52), _addr(0x53)
R1, R2, R3, R4 = _addr(0xC1), _addr(0xC2), _addr(0xC3), _addr(0xC4)


def _ledger(fee_percent: int = 10) -> tuple:
    config = replace(LedgerConfig.defaults(), protocol_fee_percent=fee_percent)
    settings = LedgerSettings.from_config(config)
    streams = InMemoryStreamSubstrate("USDCx")
    return FlowLedger(LEDGER, streams, settings), streams


def _snapshot(flows: FlowLedger, streams: InMemoryStreamSubstrate, sender: str) -> tuple:
    return (
        [(r.receiver, r.net_rate, r.total_rate_incl_fee, r.position_index)
         for r in flows.records_for_sender(sender)],
        {r: streams.get_flow_rate(LEDGER, r) for r in (R1, R2, R3, R4)},
        flows.fees_taken_total,
    )


class TestSplit:
    def test_ten_percent(self) -> None:
        flows, _ = _ledger(10)
        assert flows.split(1000) == (900, 100)

    def test_fee_is_floored(self) -> None:
        flows, _ = _ledger(10)
        net, fee = flows.split(999)
        assert fee == 99
        assert net == 900

    def test_net_plus_fee_is_exact(self) -> None:
        flows, _ = _ledger(7)
        for rate in range(0, 2000, 37):
            net, fee = flows.split(rate)
            assert net + fee == rate

    def test_zero_fee(self) -> None:
        flows, _ = _ledger(0)
        assert flows.split(1234) == (1234, 0)

    def test_negative_rate_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="negative"):
            flows.split(-1)


class TestCreate:
    def test_create_stores_record_and_outflow(self) -> None:
        flows, streams = _ledger()
        record = flows.create(S1, R1, 1000)
        assert record.net_rate == 900
        assert record.total_rate_incl_fee == 1000
        assert record.fee_rate == 100
        assert record.position_index == 0
        assert streams.get_flow_rate(LEDGER, R1) == 900
        assert flows.fees_taken_total == 100

    def test_senders_share_receiver_aggregate(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        flows.create(S2, R1, 500)
        assert streams.get_flow_rate(LEDGER, R1) == 900 + 450
        assert flows.receiver_net_total(R1) == 1350

    def test_missing_receiver_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="Missing receiver"):
            flows.create(S1, None, 1000)

    def test_zero_receiver_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="zero address"):
            flows.create(S1, ZERO_ADDRESS, 1000)

    def test_self_receiver_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="Self-referential"):
            flows.create(S1, S1, 1000)

    def test_ledger_as_receiver_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="Self-referential"):
            flows.create(S1, LEDGER, 1000)

    def test_lowercase_sender_cannot_stream_to_itself(self) -> None:
        flows, streams = _ledger()
        with pytest.raises(InvariantViolation, match="Self-referential"):
            flows.create(S1.lower(), S1, 1000)
        assert flows.record_count() == 0
        assert streams.get_flow_rate(LEDGER, S1) == 0

    def test_lowercase_ledger_receiver_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="Self-referential"):
            flows.create(S1, LEDGER.lower(), 1000)

    def test_non_positive_rate_rejected(self) -> None:
        flows, _ = _ledger()
        with pytest.raises(InvariantViolation, match="positive"):
            flows.create(S1, R1, 0)

    def test_duplicate_create_rejected(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        before = _snapshot(flows, streams, S1)
        with pytest.raises(InvariantViolation, match="already exists"):
            flows.create(S1, R1, 500)
        assert _snapshot(flows, streams, S1) == before


class TestUpdate:
    def test_increase_merges_incrementally(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        record = flows.update(S1, R1, 1000, 2000)
        assert record is not None
        assert record.total_rate_incl_fee == 2000
        assert record.net_rate == 1800
        assert streams.get_flow_rate(LEDGER, R1) == 1800

    def test_fee_computed_per_delta_not_cumulative(self) -> None:
        flows, _ = _ledger(10)
        flows.create(S1, R1, 1005)
        flows.update(S1, R1, 1005, 2010)
        record = flows.get_record(S1, R1)
        # 100 + 100, not 2010 * 10 // 100 == 201
        assert record.fee_rate == 200
        assert flows.fees_taken_total == 200

    def test_increase_for_new_pair_creates_record(self) -> None:
        flows, _ = _ledger()
        flows.create(S1, R1, 1000)
        plan = flows.plan_update(S1, R2, 1000, 1600)
        assert plan.kind == FlowPlanKind.CREATE
        flows.apply(plan)
        assert flows.get_record(S1, R2).total_rate_incl_fee == 600

    def test_zero_delta_is_noop(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        before = _snapshot(flows, streams, S1)
        assert flows.update(S1, R1, 1000, 1000) is None
        assert _snapshot(flows, streams, S1) == before

    def test_canceling_mismatch_rejected_with_identical_state(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        flows.create(S1, R2, 700)
        before = _snapshot(flows, streams, S1)
        with pytest.raises(InvariantViolation, match="partial unsubscribe"):
            flows.update(S1, R1, 1700, 1200)
        assert _snapshot(flows, streams, S1) == before

    def test_cancel_without_record_rejected(self) -> None:
        flows, _ = _ledger()
        flows.create(S1, R1, 1000)
        with pytest.raises(InvariantViolation, match="No flow record"):
            flows.update(S1, R2, 1000, 500)

    def test_exact_cancel_removes_record(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        flows.create(S1, R2, 700)
        assert flows.update(S1, R1, 1700, 700) is None
        assert not flows.has_record(S1, R1)
        assert streams.get_flow_rate(LEDGER, R1) == 0

    def test_cancel_keeps_other_senders_on_receiver(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        flows.create(S1, R2, 100)
        flows.create(S2, R1, 500)
        flows.update(S1, R1, 1100, 100)
        assert streams.get_flow_rate(LEDGER, R1) == 450

    def test_last_cancel_closes_inbound_stream(self) -> None:
        flows, streams = _ledger()
        streams.create_flow(S1, LEDGER, 1000, by=S1)
        flows.create(S1, R1, 1000)
        plan = flows.plan_update(S1, R1, 1000, 0)
        assert plan.terminates_sender
        flows.apply(plan)
        assert streams.get_flow_rate(S1, LEDGER) == 0
        assert not flows.is_self_initiated


class TestSwapPopIndex:
    def test_removal_moves_last_into_freed_slot(self) -> None:
        flows, _ = _ledger()
        for receiver, rate in ((R1, 100), (R2, 200), (R3, 300)):
            flows.create(S1, receiver, rate)
        flows.update(S1, R1, 600, 500)
        records = flows.records_for_sender(S1)
        assert [r.receiver for r in records] == [R3, R2]
        assert [r.position_index for r in records] == [0, 1]

    def test_removing_tail_needs_no_swap(self) -> None:
        flows, _ = _ledger()
        flows.create(S1, R1, 100)
        flows.create(S1, R2, 200)
        flows.update(S1, R2, 300, 100)
        records = flows.records_for_sender(S1)
        assert [(r.receiver, r.position_index) for r in records] == [(R1, 0)]

    def test_terminate_sweeps_newest_first(self) -> None:
        flows, streams = _ledger()
        for receiver, rate in ((R1, 100), (R2, 200), (R3, 300), (R4, 400)):
            flows.create(S1, receiver, rate)
        removed = flows.terminate_sender(S1)
        assert [r.receiver for r in removed] == [R4, R3, R2, R1]
        assert flows.records_for_sender(S1) == []
        assert all(streams.get_flow_rate(LEDGER, r) == 0 for r in (R1, R2, R3, R4))

    def test_terminate_after_swap_visits_every_record_once(self) -> None:
        flows, _ = _ledger()
        for receiver, rate in ((R1, 100), (R2, 200), (R3, 300), (R4, 400)):
            flows.create(S1, receiver, rate)
        flows.update(S1, R2, 1000, 800)
        removed = flows.terminate_sender(S1)
        assert sorted(r.receiver for r in removed) == sorted([R1, R3, R4])
        assert flows.record_count() == 0

    def test_terminate_unknown_sender_is_empty(self) -> None:
        flows, _ = _ledger()
        assert flows.terminate_sender(S3) == []


class TestIsolation:
    def test_terminating_one_record_leaves_others_unchanged(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        flows.create(S1, R2, 2000)
        flows.create(S1, R3, 3000)
        flows.create(S2, R2, 500)
        untouched = {
            r: (flows.get_record(S1, r).net_rate, streams.get_flow_rate(LEDGER, r))
            for r in (R1, R3)
        }

        flows.update(S1, R2, 6000, 4000)

        for r, (net, aggregate) in untouched.items():
            assert flows.get_record(S1, r).net_rate == net
            assert streams.get_flow_rate(LEDGER, r) == aggregate
        assert streams.get_flow_rate(LEDGER, R2) == 450


class TestAccountingProperties:
    def test_net_equals_gross_minus_fee_under_random_operations(self) -> None:
        flows, streams = _ledger(13)
        rng = random.Random(20261017)
        senders = [S1, S2, S3]
        receivers = [R1, R2, R3, R4]
        inbound = {s: 0 for s in senders}

        for _ in range(300):
            sender = rng.choice(senders)
            receiver = rng.choice(receivers)
            record = flows.get_record(sender, receiver)
            roll = rng.random()
            if record is None:
                rate = rng.randint(1, 5000)
                flows.update(sender, receiver, inbound[sender], inbound[sender] + rate)
                inbound[sender] += rate
            elif roll < 0.5:
                rate = rng.randint(1, 5000)
                flows.update(sender, receiver, inbound[sender], inbound[sender] + rate)
                inbound[sender] += rate
            elif roll < 0.85:
                total = record.total_rate_incl_fee
                flows.update(sender, receiver, inbound[sender], inbound[sender] - total)
                inbound[sender] -= total
            else:
                flows.terminate_sender(sender)
                inbound[sender] = 0

            for s in senders:
                assert flows.sender_net_total(s) == (
                    flows.sender_gross_total(s) - flows.sender_fee_total(s)
                )
                assert flows.sender_gross_total(s) == inbound[s]
                positions = [r.position_index for r in flows.records_for_sender(s)]
                assert positions == list(range(len(positions)))
            assert flows.reconcile() == {}

    def test_fees_taken_is_monotonic(self) -> None:
        flows, _ = _ledger()
        flows.create(S1, R1, 1000)
        taken = flows.fees_taken_total
        flows.update(S1, R1, 1000, 0)
        assert flows.fees_taken_total == taken


class TestReconcile:
    def test_reports_external_drift(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        streams.update_flow(LEDGER, R1, 1, by=LEDGER)
        assert flows.reconcile() == {R1: (900, 1)}

    def test_cancel_refuses_when_aggregate_below_stored_net(self) -> None:
        flows, streams = _ledger()
        flows.create(S1, R1, 1000)
        streams.update_flow(LEDGER, R1, 1, by=LEDGER)
        with pytest.raises(InvariantViolation, match="below stored net"):
            flows.update(S1, R1, 1000, 0)
        assert flows.has_record(S1, R1)
