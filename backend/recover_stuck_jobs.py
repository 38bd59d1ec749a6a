#!/usr/bin/env python3
"""Pause batch jobs left processing by a dead worker so they can be resumed."""

from catalog_import.core.config import get_settings
from catalog_import.db.session import SessionLocal
from catalog_import.services.job_control import purge_released_uploads, recover_stale_jobs

settings = get_settings()

print("Looking for stuck batch jobs...")
session = SessionLocal()
try:
    recovered = recover_stale_jobs(session, stale_minutes=settings.stale_job_minutes)
    if recovered:
        for job in recovered:
            print(
                f"  paused {job.id} ({job.file_original_name}) at row "
                f"{job.last_processed_row}/{job.total_count}"
            )
        print(f"\n✓ Paused {len(recovered)} job(s); resume them to continue")
    else:
        print(f"✓ No job has been processing without updates for {settings.stale_job_minutes} minutes")

    purged = purge_released_uploads(session)
    print(f"✓ Removed {purged} leftover staged upload(s)")
finally:
    session.close()

print("\nDone!")
