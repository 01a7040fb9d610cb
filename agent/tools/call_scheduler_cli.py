#!/usr/bin/env python3
"""
Call Scheduler CLI Tool

Operator commands for the PostCare call scheduling system: seed patients,
schedule and cancel calls, run a dispatch sweep, preview time parsing and
translation, and inspect call logs.

Usage:
    python tools/call_scheduler_cli.py add-patient --name "Ravi Kumar" --phone "9876543210"
    python tools/call_scheduler_cli.py create-schedule <patient-id> --when "today 6 35 pm" --message "Take your tablet"
    python tools/call_scheduler_cli.py list-schedules --status pending
    python tools/call_scheduler_cli.py cancel <schedule-id>
    python tools/call_scheduler_cli.py trigger
    python tools/call_scheduler_cli.py parse-time "tomorrow 9 am"
    python tools/call_scheduler_cli.py call-logs --limit 10
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta

import click
import redis
from dotenv import load_dotenv
from tabulate import tabulate

from config.settings import load_settings
from scheduling.service import create_schedule_service
from shared.errors import PostOpError
from shared.patients import Patient, PatientStatus, Prescription
from utils.time_utils import now_utc, to_local


def _echo_error(error: Exception):
    click.echo(f"❌ {error}")
    hint = getattr(error, "hint", None)
    if hint:
        click.echo(f"   💡 {hint}")


def _local(dt, service) -> str:
    if dt is None:
        return "-"
    return to_local(dt, service.settings.clinic_timezone).strftime('%Y-%m-%d %H:%M')


# CLI Commands
@click.group()
@click.option('--doctor-id', envvar='POSTOP_DOCTOR_ID', default='', help="Doctor the commands act for")
@click.pass_context
def cli(ctx, doctor_id):
    """PostCare Call Scheduler Management CLI"""
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj['doctor_id'] = doctor_id or None
    if 'service' not in ctx.obj:
        ctx.obj['service'] = create_schedule_service(load_settings())


@cli.command()
@click.option('--name', required=True, help="Patient name")
@click.option('--phone', default='', help="Patient phone number")
@click.option('--status', type=click.Choice([s.value for s in PatientStatus]), default='Active')
@click.option('--patient-id', help="Patient ID (will generate if not provided)")
@click.pass_context
def add_patient(ctx, name, phone, status, patient_id):
    """Add a patient to the directory"""
    service = ctx.obj['service']
    patient = Patient(name=name, phone=phone, status=PatientStatus(status), doctor_id=ctx.obj['doctor_id'] or '')
    if patient_id:
        patient.id = patient_id

    try:
        service.directory.save_patient(patient)
        click.echo(f"✅ Added patient {patient.name}")
        click.echo(f"🆔 Patient ID: {patient.id}")
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)


@cli.command()
@click.argument('patient_id')
@click.option('--medicine', required=True, help="Medicine name")
@click.option('--dosage', default='1 tablet', help="Dosage")
@click.option('--food', default='After food', help="Food instruction")
@click.option('--slots', default='morning,evening', help="Comma-separated slots: morning, afternoon, evening")
@click.option('--days', default=7, help="Course length in days")
@click.pass_context
def add_prescription(ctx, patient_id, medicine, dosage, food, slots, days):
    """Add a prescription that drives WhatsApp medication reminders"""
    service = ctx.obj['service']
    chosen = {slot.strip() for slot in slots.split(',') if slot.strip()}

    try:
        patient = service.directory.get_patient_for_doctor(patient_id, ctx.obj['doctor_id'])
        start = now_utc()
        prescription = Prescription(
            patient_id=patient.id,
            doctor_id=patient.doctor_id,
            medicine_name=medicine,
            dosage=dosage,
            food_instruction=food,
            frequency={slot: True for slot in chosen},
            start_date=start,
            end_date=start + timedelta(days=days),
        )
        service.directory.save_prescription(prescription)
        click.echo(f"✅ Added {medicine} for {patient.name} ({', '.join(sorted(chosen))})")
        click.echo(f"🆔 Prescription ID: {prescription.id}")
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)


@cli.command()
@click.argument('patient_id')
@click.option('--message', required=True, help="Reminder text read to the patient")
@click.option('--when', 'when', help="Natural-language time, e.g. 'today 6 35 pm'")
@click.option('--at', 'scheduled_at', help="Explicit ISO time (clinic-local when no offset)")
@click.pass_context
def create_schedule(ctx, patient_id, message, when, scheduled_at):
    """Schedule a follow-up call"""
    service = ctx.obj['service']

    try:
        schedule = asyncio.run(service.create_schedule(
            ctx.obj['doctor_id'], patient_id, message, scheduled_at=scheduled_at, when=when
        ))
        click.echo(f"✅ Scheduled call {schedule.id}")
        click.echo(f"⏰ {schedule.time_label} ({_local(schedule.scheduled_at, service)})")
        for lang, text in schedule.localized_variants.items():
            click.echo(f"   {lang}: {text}")
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)


@cli.command()
@click.option('--patient-id', help="Only this patient's schedules")
@click.option('--status', type=click.Choice(['pending', 'completed', 'failed', 'cancelled']),
              help="Filter by schedule status")
@click.pass_context
def list_schedules(ctx, patient_id, status):
    """List schedules in scheduled-time order"""
    service = ctx.obj['service']

    try:
        schedules = service.list_schedules(ctx.obj['doctor_id'], patient_id=patient_id, status=status)
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)
        return

    if not schedules:
        click.echo("📋 No schedules found")
        return

    table_data = []
    for schedule in schedules:
        table_data.append([
            schedule.id[:8] + "...",
            schedule.patient_id[:12],
            _local(schedule.scheduled_at, service),
            schedule.status.value + (" (dispatching)" if schedule.is_claimed else ""),
            schedule.message[:30],
            (schedule.error_message or schedule.provider_call_id or "")[:40]
        ])

    click.echo(f"📊 Found {len(schedules)} schedules:")
    click.echo(tabulate(
        table_data,
        headers=['Schedule ID', 'Patient', 'Scheduled', 'Status', 'Message', 'Call / Error'],
        tablefmt='grid'
    ))


@cli.command()
@click.argument('schedule_id')
@click.pass_context
def cancel(ctx, schedule_id):
    """Cancel a pending schedule"""
    service = ctx.obj['service']

    try:
        schedule = service.cancel_schedule(ctx.obj['doctor_id'], schedule_id)
        click.echo(f"✅ Cancelled schedule {schedule.id}")
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)


@cli.command()
@click.pass_context
def trigger(ctx):
    """Run one dispatcher sweep now"""
    service = ctx.obj['service']

    try:
        report = asyncio.run(service.trigger())
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)
        return

    click.echo(f"📞 Claimed {len(report.claimed)} due schedules")
    click.echo(f"   ✅ Completed: {len(report.completed)}")
    for schedule_id, error in report.failed.items():
        click.echo(f"   ❌ {schedule_id[:8]}...: {error}")
    if report.reaped:
        click.echo(f"   ⚠️ Reaped stale claims: {', '.join(report.reaped)}")


@cli.command()
@click.argument('text')
@click.pass_context
def parse_time(ctx, text):
    """Preview how a time expression resolves"""
    service = ctx.obj['service']

    try:
        resolved = asyncio.run(service.preview_time(text))
        click.echo(f"⏰ {resolved.label}")
        click.echo(f"   Local: {resolved.local_iso}")
        click.echo(f"   UTC:   {resolved.scheduled_at.isoformat()}")
    except PostOpError as e:
        _echo_error(e)


@cli.command()
@click.argument('message')
@click.pass_context
def translate(ctx, message):
    """Preview localized message variants"""
    service = ctx.obj['service']

    try:
        variants = asyncio.run(service.preview_translation(message))
    except PostOpError as e:
        _echo_error(e)
        return

    for lang, text in variants.items():
        click.echo(f"{lang}: {text}")


@cli.command()
@click.argument('patient_id')
@click.option('--message', help="Message to read (defaults to a test sentence)")
@click.pass_context
def test_call(ctx, patient_id, message):
    """Call a patient immediately (bypasses the schedule store)"""
    service = ctx.obj['service']

    try:
        result, call_log = asyncio.run(service.test_call(ctx.obj['doctor_id'], patient_id, message))
        click.echo("✅ Call initiated! The patient should receive the call shortly.")
        click.echo(f"   Provider call ID: {result.provider_call_id}")
        click.echo(f"   Call log ID: {call_log.id}")
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)


@cli.command()
@click.option('--patient-id', help="Only this patient's calls")
@click.option('--limit', default=20, help="Maximum number of call logs to show")
@click.option('--show-summary', is_flag=True, help="Print each call's summary")
@click.pass_context
def call_logs(ctx, patient_id, limit, show_summary):
    """List call logs, newest first"""
    service = ctx.obj['service']

    try:
        logs = service.list_call_logs(ctx.obj['doctor_id'], patient_id=patient_id, limit=limit)
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)
        return

    if not logs:
        click.echo("📋 No call logs found")
        return

    table_data = []
    for log in logs:
        table_data.append([
            log.provider_call_id[:12],
            log.patient_name,
            _local(log.created_at, service),
            log.status.value,
            log.duration_seconds if log.duration_seconds is not None else "-",
            log.ended_reason or "-"
        ])

    click.echo(tabulate(
        table_data,
        headers=['Call ID', 'Patient', 'Placed', 'Status', 'Secs', 'Ended Reason'],
        tablefmt='grid'
    ))

    if show_summary:
        for log in logs:
            if log.summary:
                click.echo(f"\n📝 {log.patient_name} ({log.provider_call_id[:12]}): {log.summary}")


@cli.command()
@click.option('--limit', default=20, help="Maximum number of events to show")
@click.pass_context
def orphan_events(ctx, limit):
    """Show webhook events that matched no call log"""
    service = ctx.obj['service']
    events = service.scheduler.list_orphan_events(limit=limit)

    if not events:
        click.echo("📋 No orphan webhook events")
        return

    for event in events:
        click.echo(json.dumps(event, ensure_ascii=False))


@cli.command()
@click.argument('patient_id')
@click.option('--confirm', is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def purge_patient(ctx, patient_id, confirm):
    """Delete a patient with their prescriptions, schedules and call logs"""
    service = ctx.obj['service']

    if not confirm:
        click.echo(f"🗑️ This will delete patient {patient_id} and all their schedules and call logs")
        if not click.confirm("Are you sure you want to continue?"):
            click.echo("❌ Operation cancelled")
            return

    try:
        schedules, logs = service.delete_patient(ctx.obj['doctor_id'], patient_id)
        click.echo(f"✅ Deleted patient {patient_id} ({schedules} schedules, {logs} call logs)")
    except (PostOpError, redis.RedisError) as e:
        _echo_error(e)


@cli.command()
@click.pass_context
def redis_status(ctx):
    """Check Redis connection and scheduling data status"""
    service = ctx.obj['service']

    try:
        ping_result = service.scheduler.redis_client.ping()
        click.echo(f"✅ Redis connection: {'OK' if ping_result else 'Failed'}")

        pending = service.scheduler.list_schedules(status=None)
        by_status = {}
        for schedule in pending:
            by_status[schedule.status.value] = by_status.get(schedule.status.value, 0) + 1

        click.echo("📋 Schedules by status:")
        for status, count in sorted(by_status.items()):
            click.echo(f"   {status}: {count}")
        click.echo(f"🕐 Checked at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    except redis.RedisError as e:
        _echo_error(e)


if __name__ == '__main__':
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    cli()
