"""Supabase database client for SkyAlert."""

import os
from datetime import datetime
from typing import List, Optional, Dict, Any, Iterable, Tuple
import httpx
import structlog

from ..models.database import TrackedFlight, Rule, User, NotificationCreate, DatabaseResult
from ..models.flight import is_landed_status
from ..utils.retry_logic import retry_async, RetryConfigs

logger = structlog.get_logger()


def _jsonable(update_data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in update_data.items()
    }


class SupabaseDBClient:
    """Async Supabase client using httpx for lightweight database operations."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url or os.getenv("SUPABASE_URL")
        self.service_key = service_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        if not self.base_url or not self.service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        self.rest_url = f"{self.base_url}/rest/v1"
        self.headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation"
        }

        # HTTP client with connection pooling
        self._client = httpx.AsyncClient(
            timeout=10.0,
            headers=self.headers,
            transport=transport
        )

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def _get_rows(self, table: str, params: Iterable[Tuple[str, str]], context: str) -> List[Dict[str, Any]]:
        async def request():
            response = await self._client.get(f"{self.rest_url}/{table}", params=list(params))
            response.raise_for_status()
            return response.json()

        return await retry_async(request, config=RetryConfigs.DATABASE, context=context)

    async def get_tracked_flights_with_direct_alerts(
        self,
        departure_from: Optional[datetime] = None,
        departure_to: Optional[datetime] = None
    ) -> List[TrackedFlight]:
        """
        Tracked flights that still need polling for direct alerts: at least one
        active alert without a rule, and not landed.

        Args:
            departure_from: Optional inclusive lower bound on departure_time
            departure_to: Optional exclusive upper bound on departure_time

        Returns:
            List of TrackedFlight objects with their active direct alerts embedded
        """
        params = [
            ("select", "*,alerts!inner(*)"),
            ("alerts.is_active", "eq.true"),
            ("alerts.rule_id", "is.null"),
            ("order", "departure_time.asc"),
        ]
        if departure_from:
            params.append(("departure_time", f"gte.{departure_from.isoformat()}"))
        if departure_to:
            params.append(("departure_time", f"lt.{departure_to.isoformat()}"))

        try:
            rows = await self._get_rows("tracked_flights", params, "get_tracked_flights_with_direct_alerts")
            flights = [TrackedFlight(**row) for row in rows]
            # Status is free text, so the landed check happens here rather than in the query
            flights = [flight for flight in flights if not is_landed_status(flight.status)]

            logger.info("tracked_flights_queried",
                count=len(flights),
                departure_from=departure_from.isoformat() if departure_from else None,
                departure_to=departure_to.isoformat() if departure_to else None
            )
            return flights

        except Exception as e:
            logger.error("tracked_flights_query_failed", error=str(e))
            return []

    async def get_active_rules(self) -> List[Rule]:
        """Active rules with their alerts and conditions."""
        params = [
            ("select", "*,alerts(*),conditions:rule_conditions(*)"),
            ("is_active", "eq.true"),
        ]

        try:
            rows = await self._get_rows("rules", params, "get_active_rules")
            rules = [Rule(**row) for row in rows]

            logger.info("active_rules_queried", count=len(rules))
            return rules

        except Exception as e:
            logger.error("active_rules_query_failed", error=str(e))
            return []

    async def get_tracked_flights_by_ids(self, flight_ids: List[str]) -> List[TrackedFlight]:
        if not flight_ids:
            return []

        params = [
            ("select", "*,alerts(*)"),
            ("id", f"in.({','.join(flight_ids)})"),
        ]

        try:
            rows = await self._get_rows("tracked_flights", params, "get_tracked_flights_by_ids")
            return [TrackedFlight(**row) for row in rows]

        except Exception as e:
            logger.error("tracked_flights_by_ids_failed",
                flight_ids=flight_ids,
                error=str(e)
            )
            return []

    async def get_user(self, user_id: str) -> Optional[User]:
        params = [
            ("select", "id,email,name"),
            ("id", f"eq.{user_id}"),
        ]

        try:
            rows = await self._get_rows("users", params, "get_user")
            if not rows:
                logger.warning("user_not_found", user_id=user_id)
                return None
            return User(**rows[0])

        except Exception as e:
            logger.error("user_retrieval_failed", user_id=user_id, error=str(e))
            return None

    async def update_tracked_flight(self, flight_id: str, update_data: Dict[str, Any]) -> DatabaseResult:
        """
        Update tracked flight fields like status, gate, departure_time.

        Args:
            flight_id: Tracked flight id
            update_data: Dict with fields to update

        Returns:
            DatabaseResult with operation status
        """
        payload = _jsonable(update_data)

        async def request():
            response = await self._client.patch(
                f"{self.rest_url}/tracked_flights",
                json=payload,
                params={"id": f"eq.{flight_id}"}
            )
            response.raise_for_status()
            return response.json()

        try:
            updated = await retry_async(request, config=RetryConfigs.DATABASE, context="update_tracked_flight")

            logger.info("tracked_flight_updated",
                flight_id=flight_id,
                update_data=payload,
                affected_rows=len(updated)
            )

            return DatabaseResult(
                success=True,
                data=updated[0] if updated else None,
                affected_rows=len(updated)
            )

        except Exception as e:
            logger.error("tracked_flight_update_failed",
                flight_id=flight_id,
                update_data=payload,
                error=str(e)
            )
            return DatabaseResult(success=False, error=str(e))

    async def create_notification(self, notification: NotificationCreate) -> DatabaseResult:
        payload = notification.model_dump()

        async def request():
            response = await self._client.post(f"{self.rest_url}/notifications", json=payload)
            response.raise_for_status()
            return response.json()

        try:
            created = await retry_async(request, config=RetryConfigs.DATABASE, context="create_notification")

            logger.info("notification_created",
                user_id=notification.user_id,
                flight_id=notification.flight_id,
                rule_id=notification.rule_id,
                type=notification.type
            )

            return DatabaseResult(
                success=True,
                data=created[0] if created else None,
                affected_rows=len(created)
            )

        except Exception as e:
            logger.error("notification_creation_failed",
                user_id=notification.user_id,
                flight_id=notification.flight_id,
                error=str(e)
            )
            return DatabaseResult(success=False, error=str(e))
