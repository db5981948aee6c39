# tests/test_alert_service.py
"""Unit tests for the delay alert service."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import timedelta
from unittest.mock import MagicMock, AsyncMock, patch
from sqlalchemy.exc import SQLAlchemyError
from gatehouse.errors import StorageError
from gatehouse.models.alert import Alert
from gatehouse.models.enums import EventKind
from gatehouse.models.registro_visitante import RegistroVisitante
from gatehouse.schemas.registro import DelayedSessionOut, DelayedVisitorOut, VisitorLegIn
from gatehouse.services import registro_service
from gatehouse.services.alert_service import create_alert, raise_delay_alerts, DELAY_ALERT
from gatehouse.services.transition_engine import transition_session
from gatehouse.utils.clock import utcnow
from conftest import BUILDING, GATE, vehicular_session


def make_delayed(*alert_counts, code="UMX1ABC"):
    return DelayedSessionOut(
        registro_id=1,
        code=code,
        building="Torre A",
        visitors=[
            DelayedVisitorOut(leg_id=i + 1, tag=f"{code}-V{i + 1:02d}", visitor_name=f"Visitor {i + 1}",
                              minutes_since_building_exit=12 + i, alert_count=count)
            for i, count in enumerate(alert_counts)
        ],
    )


class TestCreateAlert:
    @pytest.mark.asyncio
    async def test_stages_in_callers_transaction(self):
        db = MagicMock()
        alert = await create_alert(db, DELAY_ALERT, 1, "UMX1ABC", "Torre A", "late")

        db.add.assert_called_once_with(alert)
        db.commit.assert_not_called()
        assert alert.is_resolved == 0
        assert alert.registro_code == "UMX1ABC"


class TestRaiseDelayAlerts:
    @pytest.mark.asyncio
    async def test_first_check_alerts(self):
        db = MagicMock()
        with patch("gatehouse.services.alert_service.get_sessions_delayed_at_building",
                   return_value=[make_delayed(0)]), \
             patch("gatehouse.services.alert_service.increment_alert_count") as mock_inc, \
             patch("gatehouse.services.alert_service.create_alert", new_callable=AsyncMock) as mock_alert:
            await raise_delay_alerts(db, threshold_minutes=10)

            mock_alert.assert_called_once()
            mock_inc.assert_called_once_with(db, [1])

    @pytest.mark.asyncio
    async def test_quiet_between_repeats(self):
        db = MagicMock()
        with patch("gatehouse.services.alert_service.get_sessions_delayed_at_building",
                   return_value=[make_delayed(1, 2)]), \
             patch("gatehouse.services.alert_service.increment_alert_count") as mock_inc, \
             patch("gatehouse.services.alert_service.create_alert", new_callable=AsyncMock) as mock_alert:
            await raise_delay_alerts(db, threshold_minutes=10)

            mock_alert.assert_not_called()
            mock_inc.assert_called_once_with(db, [1, 2])

    @pytest.mark.asyncio
    async def test_repeat_every_nth_check(self):
        db = MagicMock()
        with patch("gatehouse.services.alert_service.settings") as mock_settings, \
             patch("gatehouse.services.alert_service.get_sessions_delayed_at_building",
                   return_value=[make_delayed(3, 1)]), \
             patch("gatehouse.services.alert_service.increment_alert_count"), \
             patch("gatehouse.services.alert_service.create_alert", new_callable=AsyncMock) as mock_alert:
            mock_settings.ALERT_REPEAT_EVERY = 3
            await raise_delay_alerts(db, threshold_minutes=10)

            mock_alert.assert_called_once()
            description = mock_alert.call_args.args[5]
            assert "Visitor 1" in description
            assert "Visitor 2" not in description

    @pytest.mark.asyncio
    async def test_nothing_delayed(self):
        db = MagicMock()
        with patch("gatehouse.services.alert_service.get_sessions_delayed_at_building", return_value=[]), \
             patch("gatehouse.services.alert_service.increment_alert_count") as mock_inc:
            assert await raise_delay_alerts(db) == []
            mock_inc.assert_not_called()

    @pytest.mark.asyncio
    async def test_default_threshold_from_settings(self):
        db = MagicMock()
        with patch("gatehouse.services.alert_service.settings") as mock_settings, \
             patch("gatehouse.services.alert_service.get_sessions_delayed_at_building",
                   return_value=[]) as mock_delayed:
            mock_settings.DELAY_ALERT_MINUTES = 25
            await raise_delay_alerts(db)
            mock_delayed.assert_called_once_with(db, 25)


class TestDelayPassIsAtomic:
    @pytest.fixture
    def delayed_registro(self, db, people, car):
        registro = registro_service.create_session(
            db, vehicular_session(people[0].id, car.id, 2, building="Torre A"), GATE)
        registro_service.attach_visitors(db, registro.id, [VisitorLegIn(visitor_id=people[1].id)], GATE)
        transition_session(db, registro.id, EventKind.BUILDING_IN, BUILDING)
        transition_session(db, registro.id, EventKind.BUILDING_OUT, BUILDING)
        db.refresh(registro)
        for leg in registro.visitantes:
            leg.building_exit_at = utcnow() - timedelta(minutes=15)
        db.commit()
        return registro

    def _alert_counts(self, db, registro):
        rows = db.query(RegistroVisitante.alert_count).filter(
            RegistroVisitante.registro_id == registro.id).order_by(RegistroVisitante.id).all()
        return [count for (count,) in rows]

    @pytest.mark.asyncio
    async def test_failed_increment_leaves_no_alerts(self, db, delayed_registro):
        with patch("gatehouse.services.alert_service.increment_alert_count",
                   side_effect=SQLAlchemyError("connection lost")):
            with pytest.raises(StorageError):
                await raise_delay_alerts(db, threshold_minutes=10)

        assert db.query(Alert).count() == 0
        assert self._alert_counts(db, delayed_registro) == [0, 0]

    @pytest.mark.asyncio
    async def test_failed_alert_insert_rolls_back_counters(self, db, delayed_registro):
        with patch("gatehouse.services.alert_service.create_alert", new_callable=AsyncMock,
                   side_effect=SQLAlchemyError("connection lost")):
            with pytest.raises(StorageError):
                await raise_delay_alerts(db, threshold_minutes=10)

        assert db.query(Alert).count() == 0
        assert self._alert_counts(db, delayed_registro) == [0, 0]

    @pytest.mark.asyncio
    async def test_retry_after_failure_alerts_once(self, db, delayed_registro):
        with patch("gatehouse.services.alert_service.increment_alert_count",
                   side_effect=SQLAlchemyError("connection lost")):
            with pytest.raises(StorageError):
                await raise_delay_alerts(db, threshold_minutes=10)

        alerts = await raise_delay_alerts(db, threshold_minutes=10)

        assert len(alerts) == 1
        assert db.query(Alert).count() == 1
        assert self._alert_counts(db, delayed_registro) == [1, 1]
        assert delayed_registro.code in alerts[0].description
