## leasesign/core/celery_app.py

"""
Celery application for signing emails, link expiry and landlord reminders.

Broker and result backend are Redis; see leasesign.worker.config for the
beat schedule.
"""

from celery import Celery

app = Celery("leasesign")
app.config_from_object("leasesign.worker.config")

# Picks up tasks.py in each package
app.autodiscover_tasks([
    "leasesign.signing",
    "leasesign.leases",
    "leasesign.notifications",
])

if __name__ == "__main__":
    app.start()
