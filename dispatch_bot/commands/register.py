"""Registration of slash commands for the bot."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands
from pydantic import ValidationError as PydanticValidationError

from ..adapters.base import Notifier
from ..core.availability import AvailabilityResolver
from ..core.conflicts import ConflictDetector
from ..core.models import (
    Assignment,
    AssignmentStatus,
    AvailabilityKind,
    EscortRequest,
    Recurrence,
    Rider,
    RiderStatus,
    TimeWindow,
)
from ..core.notifications import (
    format_date,
    format_time,
    notify_reconcile_result,
    send_pending_notifications,
)
from ..core.reconciler import AssignmentReconciler, ReconcileResult
from ..core.reports import Report, generate_report
from ..data.store import DispatchStore
from ..errors import DispatchError, ValidationError, from_pydantic
from .parsing import parse_date, parse_id_list, parse_time, parse_weekday
from .utils import DISPATCH_CHANNEL

log = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Reply formatting
# ----------------------------------------------------------------------
def describe_request(request: EscortRequest, assignments: list[Assignment]) -> str:
    lines = [
        f"**{request.request_id}** · {request.status.value}",
        f"{format_date(request.event_date)} {format_time(request.start_time)}"
        f" - {format_time(request.end_time)}",
        f"Riders: {len(assignments)}/{request.riders_needed}",
    ]
    if request.requester_name:
        lines.append(f"Requester: {request.requester_name}")
    for a in assignments:
        lines.append(f"• {a.assignment_id} {a.rider_name or a.rider_id} ({a.status.value})")
    return "\n".join(lines)


def describe_result(result: ReconcileResult) -> str:
    lines = [f"Request {result.request_id} is now **{result.status.value}**."]
    if result.created:
        lines.append(f"Created: {', '.join(result.created)}")
    if result.cancelled:
        lines.append(f"Cancelled: {', '.join(result.cancelled)}")
    if not result.changed:
        lines.append("No assignment changes.")
    for flag in result.flagged:
        verb = "assigned despite" if flag.assigned else "not assigned"
        lines.append(
            f"⚠️ {flag.rider_name or flag.rider_id} {verb}: {'; '.join(flag.reasons)}"
        )
    return "\n".join(lines)


def describe_windows(rider_id: str, day, windows: list[TimeWindow]) -> str:
    if not windows:
        return f"{rider_id} is unavailable on {format_date(day)}."
    spans = ", ".join(str(w) for w in windows)
    return f"{rider_id} is available on {format_date(day)}: {spans}"


def describe_report(report: Report) -> str:
    lines = [
        f"Report {format_date(report.start)} to {format_date(report.end)}",
        f"Requests: {report.total_requests} (completed {report.completed_requests})",
        f"Active riders: {report.active_riders}",
        f"Hours: {report.completed_hours:.1f} completed, {report.scheduled_hours:.1f} scheduled",
    ]
    for status, count in report.requests_by_status.items():
        lines.append(f"  {status}: {count}")
    for perf in report.riders[:10]:
        lines.append(
            f"• {perf.name}: {perf.assignments} assignments, "
            f"{perf.completion_rate}% completed, {perf.hours:.1f}h"
        )
    return "\n".join(lines)


async def _reply_error(interaction: discord.Interaction, exc: DispatchError) -> None:
    log.info("Command rejected: %s", exc)
    await interaction.response.send_message(f"❌ {exc}", ephemeral=True)


def register_commands(
    bot: commands.Bot,
    store: DispatchStore,
    reconciler: AssignmentReconciler,
    notifier: Notifier | None = None,
) -> None:
    """Register dispatch slash commands on ``bot``."""
    tree = bot.tree
    resolver = AvailabilityResolver(store)
    detector = ConflictDetector(store)

    @tree.command(name="request_create", description="Create an escort request")
    @discord.app_commands.describe(
        event_date="Event date (YYYY-MM-DD)",
        start="Start time (HH:MM)",
        end="End time (HH:MM)",
        riders_needed="Number of riders needed",
        requester="Requester name",
        start_location="Where the escort starts",
        end_location="Where the escort ends",
        notes="Notes for riders",
        courtesy="Courtesy escort",
    )
    async def request_create(
        interaction: discord.Interaction,
        event_date: str,
        start: str,
        end: str,
        riders_needed: int = 1,
        requester: str = "",
        start_location: str = "",
        end_location: str = "",
        notes: str = "",
        courtesy: bool = False,
    ) -> None:
        try:
            request = store.create_request(
                parse_date(event_date, "event_date"),
                parse_time(start, "start"),
                parse_time(end, "end"),
                riders_needed,
                requester_name=requester,
                start_location=start_location,
                end_location=end_location,
                notes=notes,
                courtesy=courtesy,
            )
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(
            f"Created request **{request.request_id}**.", ephemeral=True
        )

    @tree.command(name="assign", description="Set the riders assigned to a request")
    @discord.app_commands.describe(
        request_id="Request ID, e.g. A-01-24",
        riders="Comma-separated rider IDs; leave empty to unassign everyone",
        override="Comma-separated rider IDs to assign even if unavailable",
    )
    async def assign(
        interaction: discord.Interaction,
        request_id: str,
        riders: str = "",
        override: str = "",
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            result = reconciler.reconcile(
                request_id, parse_id_list(riders), overrides=parse_id_list(override)
            )
        except DispatchError as exc:
            log.info("Assign rejected: %s", exc)
            await interaction.edit_original_response(content=f"❌ {exc}")
            return

        message = describe_result(result)
        if notifier is not None and result.changed:
            outcomes = await notify_reconcile_result(store, notifier, result)
            failed = [o for o in outcomes if not o.success]
            message += f"\nNotified {len(outcomes) - len(failed)}/{len(outcomes)} riders."
        await interaction.edit_original_response(content=message)

        guild = getattr(interaction, "guild", None)
        if guild is not None and result.changed:
            channel = discord.utils.get(guild.text_channels, name=DISPATCH_CHANNEL)
            if channel is not None:
                await channel.send(describe_result(result))

    @tree.command(name="request_status", description="Show a request and its riders")
    @discord.app_commands.describe(request_id="Request ID")
    async def request_status(interaction: discord.Interaction, request_id: str) -> None:
        try:
            request = store.require_request(request_id)
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        assignments = store.assignments_for_request(request.request_id)
        await interaction.response.send_message(
            describe_request(request, assignments), ephemeral=True
        )

    @tree.command(name="request_update", description="Change a request's time or riders needed")
    @discord.app_commands.describe(
        request_id="Request ID",
        start="New start time (HH:MM)",
        end="New end time (HH:MM)",
        riders_needed="New number of riders needed",
    )
    async def request_update(
        interaction: discord.Interaction,
        request_id: str,
        start: str = "",
        end: str = "",
        riders_needed: int | None = None,
    ) -> None:
        changes: dict = {}
        try:
            if start:
                changes["start_time"] = parse_time(start, "start")
            if end:
                changes["end_time"] = parse_time(end, "end")
            if riders_needed is not None:
                changes["riders_needed"] = riders_needed
            if not changes:
                raise ValidationError("Nothing to change", entity="request", entity_id=request_id)
            store.update_request_details(request_id, **changes)
            result = reconciler.refresh_status(request_id)
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(
            f"Updated {result.request_id}; status is {result.status.value}.", ephemeral=True
        )

    @tree.command(name="request_close", description="Mark a request completed or cancelled")
    @discord.app_commands.describe(request_id="Request ID", outcome="Final outcome")
    @discord.app_commands.choices(
        outcome=[
            discord.app_commands.Choice(name="Completed", value="completed"),
            discord.app_commands.Choice(name="Cancelled", value="cancelled"),
        ]
    )
    async def request_close(
        interaction: discord.Interaction,
        request_id: str,
        outcome: discord.app_commands.Choice[str],
    ) -> None:
        try:
            if outcome.value == "completed":
                request = store.complete_request(request_id)
            else:
                request = store.cancel_request(request_id)
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(
            f"Request {request.request_id} is {request.status.value}.", ephemeral=True
        )

    @tree.command(name="assignment_status", description="Move an assignment along its lifecycle")
    @discord.app_commands.describe(assignment_id="Assignment ID, e.g. ASG-0001", status="New status")
    @discord.app_commands.choices(
        status=[
            discord.app_commands.Choice(name=s.value, value=s.value)
            for s in AssignmentStatus
        ]
    )
    async def assignment_status(
        interaction: discord.Interaction,
        assignment_id: str,
        status: discord.app_commands.Choice[str],
    ) -> None:
        try:
            assignment = store.transition_assignment(
                assignment_id.strip().upper(), AssignmentStatus(status.value)
            )
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(
            f"{assignment.assignment_id} is {assignment.status.value}.", ephemeral=True
        )

    @tree.command(name="availability_add", description="Declare a rider available or unavailable")
    @discord.app_commands.describe(
        rider_id="Rider ID",
        date="One-off date (YYYY-MM-DD)",
        weekday="Repeat every weekday instead (mon..sun)",
        repeat_from="First date of the weekly repeat (defaults to today)",
        repeat_until="Last date of the weekly repeat",
        start="Start time (HH:MM); leave empty with unavailable for the whole day",
        end="End time (HH:MM)",
        unavailable="Mark the time as unavailable",
        notes="Notes",
    )
    async def availability_add(
        interaction: discord.Interaction,
        rider_id: str,
        date: str = "",
        weekday: str = "",
        repeat_from: str = "",
        repeat_until: str = "",
        start: str = "",
        end: str = "",
        unavailable: bool = False,
        notes: str = "",
    ) -> None:
        try:
            recurrence = None
            day = None
            if weekday:
                first = parse_date(repeat_from, "repeat_from") if repeat_from else store.now().date()
                last = parse_date(repeat_until, "repeat_until") if repeat_until else None
                if last is not None and last < first:
                    raise ValidationError(
                        "repeat_until must not be before the first date", field="repeat_until"
                    )
                recurrence = Recurrence(
                    weekday=parse_weekday(weekday), start_date=first, repeat_until=last
                )
            elif date:
                day = parse_date(date)
            else:
                raise ValidationError("Give either a date or a weekday", field="date")
            entry = store.add_availability(
                rider_id,
                date=day,
                recurrence=recurrence,
                start_time=parse_time(start, "start") if start else None,
                end_time=parse_time(end, "end") if end else None,
                kind=AvailabilityKind.UNAVAILABLE if unavailable else AvailabilityKind.AVAILABLE,
                notes=notes,
            )
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(
            f"Saved {entry.kind.value} entry {entry.entry_id[:8]} for {entry.rider_id}.",
            ephemeral=True,
        )

    @tree.command(name="availability_show", description="Show a rider's free windows on a date")
    @discord.app_commands.describe(rider_id="Rider ID", date="Date (YYYY-MM-DD)")
    async def availability_show(interaction: discord.Interaction, rider_id: str, date: str) -> None:
        try:
            day = parse_date(date)
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        windows = resolver.get_windows_for_date(rider_id.strip(), day)
        await interaction.response.send_message(
            describe_windows(rider_id.strip(), day, windows), ephemeral=True
        )

    @tree.command(name="conflicts", description="List a rider's bookings overlapping a window")
    @discord.app_commands.describe(
        rider_id="Rider ID", date="Date (YYYY-MM-DD)", start="Start (HH:MM)", end="End (HH:MM)"
    )
    async def conflicts(
        interaction: discord.Interaction, rider_id: str, date: str, start: str, end: str
    ) -> None:
        try:
            day = parse_date(date)
            start_time, end_time = parse_time(start, "start"), parse_time(end, "end")
            if end_time <= start_time:
                raise ValidationError("end must be after start", field="end")
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        found = detector.find_conflicts(
            rider_id.strip(), day, TimeWindow(start=start_time, end=end_time)
        )
        if not found:
            text = f"No conflicts for {rider_id.strip()}."
        else:
            text = "\n".join(
                f"• {a.assignment_id} ({a.request_id}) {a.window}" for a in found
            )
        await interaction.response.send_message(text, ephemeral=True)

    @tree.command(name="report", description="Request and rider statistics for a date range")
    @discord.app_commands.describe(start="First date (YYYY-MM-DD)", end="Last date (YYYY-MM-DD)")
    async def report(interaction: discord.Interaction, start: str, end: str) -> None:
        try:
            summary = generate_report(store, parse_date(start, "start"), parse_date(end, "end"))
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(describe_report(summary), ephemeral=True)

    @tree.command(name="rider_add", description="Add a rider to the roster")
    @discord.app_commands.describe(
        rider_id="Rider ID",
        name="Full name",
        phone="10-digit phone number",
        email="Email address",
        member="Discord account that receives assignment DMs",
    )
    async def rider_add(
        interaction: discord.Interaction,
        rider_id: str,
        name: str,
        phone: str = "",
        email: str = "",
        member: discord.Member | None = None,
    ) -> None:
        try:
            try:
                rider = Rider(
                    rider_id=rider_id,
                    name=name,
                    phone=phone or None,
                    email=email or None,
                    discord_id=member.id if member is not None else None,
                )
            except PydanticValidationError as exc:
                raise from_pydantic(exc, entity="rider", entity_id=rider_id) from exc
            store.add_rider(rider)
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        linked = " (Discord linked)" if rider.discord_id is not None else ""
        await interaction.response.send_message(
            f"Added rider **{rider.rider_id}** {rider.name}{linked}.", ephemeral=True
        )

    @tree.command(name="rider_link", description="Link a rider to a Discord account")
    @discord.app_commands.describe(rider_id="Rider ID", member="Discord account")
    async def rider_link(
        interaction: discord.Interaction, rider_id: str, member: discord.Member
    ) -> None:
        try:
            rider = store.update_rider(rider_id.strip(), discord_id=member.id)
        except DispatchError as exc:
            await _reply_error(interaction, exc)
            return
        await interaction.response.send_message(
            f"{rider.rider_id} now receives DMs as {member}.", ephemeral=True
        )

    @tree.command(name="rider_status", description="Set the roster status of one or more riders")
    @discord.app_commands.describe(riders="Comma-separated rider IDs", status="New status")
    @discord.app_commands.choices(
        status=[discord.app_commands.Choice(name=s.value, value=s.value) for s in RiderStatus]
    )
    async def rider_status(
        interaction: discord.Interaction,
        riders: str,
        status: discord.app_commands.Choice[str],
    ) -> None:
        rider_ids = parse_id_list(riders)
        if not rider_ids:
            await _reply_error(
                interaction, ValidationError("Give at least one rider ID", field="riders")
            )
            return
        new_status = RiderStatus(status.value)
        updated: list[str] = []
        errors: list[str] = []
        for rider_id in rider_ids:
            try:
                store.update_rider_status(rider_id, new_status)
            except DispatchError as exc:
                errors.append(f"❌ {exc}")
                continue
            updated.append(rider_id)
        lines = [f"Set {len(updated)}/{len(rider_ids)} riders to {new_status.value}."]
        await interaction.response.send_message("\n".join(lines + errors), ephemeral=True)

    @tree.command(name="notify_pending", description="Resend assignment notices that did not get through")
    async def notify_pending(interaction: discord.Interaction) -> None:
        if notifier is None:
            await interaction.response.send_message(
                "❌ Rider notifications are not configured", ephemeral=True
            )
            return
        await interaction.response.defer(ephemeral=True)
        outcomes = await send_pending_notifications(store, notifier)
        if not outcomes:
            message = "No pending assignment notices."
        else:
            sent = sum(1 for o in outcomes if o.success)
            message = f"Delivered {sent}/{len(outcomes)} pending assignment notices."
            message += "".join(
                f"\n⚠️ {o.assignment_id} to {o.rider_id}: {o.error}" for o in outcomes if not o.success
            )
        await interaction.edit_original_response(content=message)
