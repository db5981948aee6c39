# tests/test_transition_engine.py
"""Checkpoint state machine, headcount closure and next-action hints."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import patch
from sqlalchemy.exc import SQLAlchemyError
from gatehouse.errors import (AlreadyCompleted, CapacityExceeded, HeadcountMismatch, InvalidTransition,
                              NotFound, PermissionDenied, StorageError, ValidationError)
from gatehouse.models.bitacora import BitacoraEvent
from gatehouse.models.enums import EventKind, LegStatus, RegistroStatus, VehicleLegStatus
from gatehouse.models.registro_visitante import RegistroVisitante
from gatehouse.schemas.registro import VisitorLegIn
from gatehouse.services import registro_service
from gatehouse.services.roles import GuardRole
from gatehouse.services.transition_engine import (TRANSITIONS, TargetType, batch_gate_exit,
                                                  legal_actions, next_actions,
                                                  register_building_entry, transition,
                                                  transition_session, transition_vehicle,
                                                  transition_visitor)
from conftest import ADMIN, BUILDING, GATE, SUPERVISOR, make_vehicle, vehicular_session


@pytest.fixture
def session_of_two(db, people, car):
    """Driver + one passenger at the gate, expected_count 2."""
    registro = registro_service.create_session(db, vehicular_session(people[0].id, car.id, 2), GATE)
    registro_service.attach_visitors(db, registro.id, [VisitorLegIn(visitor_id=people[1].id)], GATE)
    db.refresh(registro)
    return registro


def _leg_ids(registro):
    return [leg.id for leg in registro.visitantes]


def _walk_to_gate(db, registro):
    transition_session(db, registro.id, EventKind.BUILDING_IN, BUILDING)
    transition_session(db, registro.id, EventKind.BUILDING_OUT, BUILDING)


class TestTransitionTable:
    def test_building_in_only_from_at_gate(self):
        assert legal_actions(LegStatus.AT_GATE, GuardRole.BUILDING) == [EventKind.BUILDING_IN]
        assert legal_actions(LegStatus.IN_BUILDING, GuardRole.BUILDING) == [EventKind.BUILDING_OUT]

    def test_gate_role_sees_gate_actions_only(self):
        assert legal_actions(LegStatus.AT_GATE, GuardRole.GATEHOUSE) == []
        assert legal_actions(LegStatus.AWAITING_PICKUP, GuardRole.GATEHOUSE) == [EventKind.GATE_OUT]

    def test_completed_is_terminal(self):
        for role in GuardRole:
            assert legal_actions(LegStatus.COMPLETED, role) == []

    def test_gate_in_has_no_from_state(self):
        assert TRANSITIONS[EventKind.GATE_IN].from_states == frozenset()


class TestVisitorTransitions:
    def test_building_entry_stamps_leg_and_session(self, db, session_of_two):
        leg_id = session_of_two.visitantes[0].id
        leg = transition_visitor(db, leg_id, EventKind.BUILDING_IN, BUILDING)

        assert leg.status == LegStatus.IN_BUILDING
        assert leg.building_entry_at is not None
        db.refresh(session_of_two)
        assert session_of_two.building_entry_guard_id == BUILDING.user_id

    def test_building_entry_from_wrong_state(self, db, session_of_two):
        leg_id = session_of_two.visitantes[0].id
        transition_visitor(db, leg_id, EventKind.BUILDING_IN, BUILDING)
        before = db.query(BitacoraEvent).count()

        with pytest.raises(InvalidTransition):
            transition_visitor(db, leg_id, EventKind.BUILDING_IN, BUILDING)

        leg = db.get(RegistroVisitante, leg_id)
        db.refresh(leg)
        assert leg.status == LegStatus.IN_BUILDING
        assert db.query(BitacoraEvent).count() == before

    def test_gate_out_before_building_exit(self, db, session_of_two):
        leg_id = session_of_two.visitantes[0].id
        with pytest.raises(InvalidTransition):
            transition_visitor(db, leg_id, EventKind.GATE_OUT, GATE)

    def test_wrong_role(self, db, session_of_two):
        leg_id = session_of_two.visitantes[0].id
        with pytest.raises(PermissionDenied) as exc:
            transition_visitor(db, leg_id, EventKind.BUILDING_IN, GATE)
        assert exc.value.status == 403
        assert isinstance(exc.value, InvalidTransition)

    def test_override_roles(self, db, session_of_two):
        first, second = _leg_ids(session_of_two)
        assert transition_visitor(db, first, EventKind.BUILDING_IN, SUPERVISOR).status == LegStatus.IN_BUILDING
        assert transition_visitor(db, second, EventKind.BUILDING_IN, ADMIN).status == LegStatus.IN_BUILDING

    def test_pickup_branch(self, db, session_of_two):
        leg_id = session_of_two.visitantes[1].id
        transition_visitor(db, leg_id, EventKind.BUILDING_IN, BUILDING)
        leg = transition_visitor(db, leg_id, EventKind.BUILDING_OUT, BUILDING, pickup=True)
        assert leg.status == LegStatus.AWAITING_PICKUP
        assert leg.building_exit_at is not None

    def test_gate_in_is_creation_only(self, db, session_of_two):
        with pytest.raises(InvalidTransition):
            transition_visitor(db, session_of_two.visitantes[0].id, EventKind.GATE_IN, GATE)

    def test_unknown_leg(self, db):
        with pytest.raises(NotFound):
            transition(db, TargetType.VISITOR, 999, EventKind.BUILDING_IN, BUILDING)

    def test_single_gate_out_counts_toward_headcount(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        first, second = _leg_ids(session_of_two)

        transition_visitor(db, first, EventKind.GATE_OUT, GATE)
        db.refresh(session_of_two)
        assert session_of_two.departed_count == 1
        assert session_of_two.status == RegistroStatus.INITIATED

        transition_visitor(db, second, EventKind.GATE_OUT, GATE)
        db.refresh(session_of_two)
        assert session_of_two.status == RegistroStatus.COMPLETED


class TestBuildingEntry:
    def test_adds_visitors_not_seen_at_gate(self, db, people, car):
        registro = registro_service.create_session(db, vehicular_session(people[0].id, car.id, 3), GATE)
        register_building_entry(db, registro.id, BUILDING,
                                new_visitors=[VisitorLegIn(visitor_id=people[1].id)])
        db.refresh(registro)

        statuses = [leg.status for leg in registro.visitantes]
        assert statuses == [LegStatus.IN_BUILDING, LegStatus.IN_BUILDING]
        assert registro.visitantes[1].tag == f"{registro.code}-V01"

    def test_new_visitors_respect_capacity(self, db, session_of_two, people):
        with pytest.raises(CapacityExceeded):
            register_building_entry(db, session_of_two.id, BUILDING,
                                    new_visitors=[VisitorLegIn(visitor_id=people[2].id)])
        db.refresh(session_of_two)
        assert all(leg.status == LegStatus.AT_GATE for leg in session_of_two.visitantes)

    def test_leg_from_other_session(self, db, session_of_two, people):
        other = registro_service.create_session(
            db, vehicular_session(people[3].id, make_vehicle(db, "OTR0001").id, 1), GATE)
        with pytest.raises(NotFound):
            register_building_entry(db, session_of_two.id, BUILDING, leg_ids=[other.visitantes[0].id])

    def test_nobody_waiting(self, db, session_of_two):
        register_building_entry(db, session_of_two.id, BUILDING)
        with pytest.raises(InvalidTransition):
            register_building_entry(db, session_of_two.id, BUILDING)


class TestBatchGateExit:
    def test_end_to_end_two_person_visit(self, db, session_of_two, people):
        with pytest.raises(CapacityExceeded):
            registro_service.attach_visitors(db, session_of_two.id,
                                             [VisitorLegIn(visitor_id=people[2].id)], GATE)
        _walk_to_gate(db, session_of_two)

        result = batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), GATE,
                                 exit_count=2, close=True)

        assert result.completed
        assert result.exited == 2
        db.refresh(session_of_two)
        assert session_of_two.status == RegistroStatus.COMPLETED
        assert session_of_two.gate_exit_guard_id == GATE.user_id
        assert all(leg.status == LegStatus.COMPLETED for leg in session_of_two.visitantes)
        assert all(v.status == VehicleLegStatus.COMPLETED and v.exited_at for v in session_of_two.vehiculos)

        for leg_id in _leg_ids(session_of_two):
            with pytest.raises(AlreadyCompleted):
                transition_visitor(db, leg_id, EventKind.BUILDING_IN, BUILDING)

    def test_close_below_expected_changes_nothing(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        first = _leg_ids(session_of_two)[0]
        events_before = db.query(BitacoraEvent).count()

        with pytest.raises(HeadcountMismatch):
            batch_gate_exit(db, session_of_two.id, [first], GATE, exit_count=1, close=True)

        db.refresh(session_of_two)
        assert session_of_two.departed_count == 0
        assert all(leg.status == LegStatus.EXITED_BUILDING for leg in session_of_two.visitantes)
        assert db.query(BitacoraEvent).count() == events_before

    def test_declared_count_must_match_batch(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        with pytest.raises(HeadcountMismatch):
            batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), GATE, exit_count=3)

    def test_partial_exits(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        first, second = _leg_ids(session_of_two)

        partial = batch_gate_exit(db, session_of_two.id, [first], GATE, exit_count=1)
        assert not partial.completed
        assert partial.remaining == 1

        final = batch_gate_exit(db, session_of_two.id, [second], GATE, exit_count=1)
        assert final.completed

    def test_vehicle_leaves_with_its_driver(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        driver = session_of_two.visitantes[0]
        assert driver.is_driver

        batch_gate_exit(db, session_of_two.id, [driver.id], GATE, exit_count=1)
        db.refresh(session_of_two)
        assert session_of_two.vehiculos[0].status == VehicleLegStatus.COMPLETED

    def test_one_bad_leg_rejects_whole_batch(self, db, session_of_two):
        first, second = _leg_ids(session_of_two)
        transition_visitor(db, first, EventKind.BUILDING_IN, BUILDING)
        transition_visitor(db, first, EventKind.BUILDING_OUT, BUILDING)

        with pytest.raises(InvalidTransition):
            batch_gate_exit(db, session_of_two.id, [first, second], GATE, exit_count=2, close=True)
        leg = db.get(RegistroVisitante, first)
        db.refresh(leg)
        assert leg.status == LegStatus.EXITED_BUILDING

    def test_duplicate_leg_ids(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        first = _leg_ids(session_of_two)[0]
        with pytest.raises(ValidationError) as exc:
            batch_gate_exit(db, session_of_two.id, [first, first], GATE, exit_count=2)
        assert exc.value.code == "DUPLICATE_LEG"

    def test_building_guard_cannot_exit_gate(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        with pytest.raises(PermissionDenied):
            batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), BUILDING, exit_count=2)

    def test_completed_session_rejects_batch(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        ids = _leg_ids(session_of_two)
        batch_gate_exit(db, session_of_two.id, ids, GATE, exit_count=2, close=True)
        with pytest.raises(AlreadyCompleted):
            batch_gate_exit(db, session_of_two.id, ids, GATE, exit_count=2, close=True)


class TestVehicleTransitions:
    def test_vehicle_leaves_alone(self, db, session_of_two):
        vleg_id = session_of_two.vehiculos[0].id
        vleg = transition_vehicle(db, vleg_id, EventKind.GATE_OUT, GATE)
        assert vleg.status == VehicleLegStatus.COMPLETED
        db.refresh(session_of_two)
        assert session_of_two.status == RegistroStatus.INITIATED

    def test_people_still_close_after_vehicle_left(self, db, session_of_two):
        vleg_id = session_of_two.vehiculos[0].id
        left_at = transition_vehicle(db, vleg_id, EventKind.GATE_OUT, GATE).exited_at
        _walk_to_gate(db, session_of_two)

        result = batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), GATE,
                                 exit_count=2, close=True)

        assert result.completed
        db.refresh(session_of_two)
        assert session_of_two.vehiculos[0].exited_at == left_at

    def test_vehicle_of_completed_session(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), GATE, exit_count=2, close=True)
        with pytest.raises(AlreadyCompleted):
            transition_vehicle(db, session_of_two.vehiculos[0].id, EventKind.GATE_OUT, GATE)

    def test_vehicle_only_exits(self, db, session_of_two):
        with pytest.raises(InvalidTransition):
            transition(db, TargetType.VEHICLE, session_of_two.vehiculos[0].id, EventKind.BUILDING_IN, GATE)


class TestAtomicity:
    def test_log_failure_rolls_back_leg(self, db, session_of_two):
        leg_id = session_of_two.visitantes[0].id
        with patch("gatehouse.services.event_log.append", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(StorageError):
                transition_visitor(db, leg_id, EventKind.BUILDING_IN, BUILDING)

        leg = db.get(RegistroVisitante, leg_id)
        db.refresh(leg)
        assert leg.status == LegStatus.AT_GATE
        assert leg.building_entry_at is None

    def test_log_failure_mid_batch(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        calls = {"n": 0}

        from gatehouse.services import event_log
        real_append = event_log.append

        def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise SQLAlchemyError("connection lost")
            return real_append(*args, **kwargs)

        with patch("gatehouse.services.event_log.append", side_effect=flaky):
            with pytest.raises(StorageError):
                batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), GATE,
                                exit_count=2, close=True)

        db.refresh(session_of_two)
        assert session_of_two.status == RegistroStatus.INITIATED
        assert session_of_two.departed_count == 0
        assert all(leg.status == LegStatus.EXITED_BUILDING for leg in session_of_two.visitantes)


class TestNextActions:
    def test_building_guard_gets_one_suggestion(self, db, session_of_two):
        leg_id = session_of_two.visitantes[0].id
        hint = next_actions(db, TargetType.VISITOR, leg_id, BUILDING)
        assert hint.suggested == EventKind.BUILDING_IN
        assert hint.options == [EventKind.BUILDING_IN]
        assert hint.last_event == EventKind.GATE_IN

    def test_gate_guard_has_nothing_at_gate(self, db, session_of_two):
        hint = next_actions(db, TargetType.VISITOR, session_of_two.visitantes[0].id, GATE)
        assert hint.suggested is None
        assert hint.options == []

    def test_supervisor_sees_every_option(self, db, session_of_two):
        first = _leg_ids(session_of_two)[0]
        transition_visitor(db, first, EventKind.BUILDING_IN, BUILDING)

        hint = next_actions(db, TargetType.SESSION, session_of_two.id, SUPERVISOR)
        assert hint.options == [EventKind.BUILDING_IN, EventKind.BUILDING_OUT]

        narrowed = next_actions(db, TargetType.SESSION, session_of_two.id, BUILDING)
        assert narrowed.options == [EventKind.BUILDING_IN]

    def test_suggestion_is_accepted_at_commit(self, db, session_of_two):
        leg_id = session_of_two.visitantes[1].id
        for guard in (BUILDING, BUILDING, GATE):
            hint = next_actions(db, TargetType.VISITOR, leg_id, guard)
            transition(db, TargetType.VISITOR, leg_id, hint.suggested, guard)
        leg = db.get(RegistroVisitante, leg_id)
        db.refresh(leg)
        assert leg.status == LegStatus.COMPLETED

    def test_completed_session_offers_nothing(self, db, session_of_two):
        _walk_to_gate(db, session_of_two)
        batch_gate_exit(db, session_of_two.id, _leg_ids(session_of_two), GATE, exit_count=2, close=True)
        hint = next_actions(db, TargetType.SESSION, session_of_two.id, ADMIN)
        assert hint.options == []
        assert hint.current_status == RegistroStatus.COMPLETED.value
        assert hint.last_event == EventKind.GATE_OUT
