# utils/worker.py
"""
Background work queue for deferred jobs (e.g. identity probes).
Jobs are stored in the workerqueue table and executed by a daemon thread
inside an app context. A job row is removed only after its command has
returned, so every job runs at least once.
"""
import json
import sqlite3
import threading
import time
import traceback
from flask import current_app

PRIORITY_HIGH = 20
PRIORITY_MEDIUM = 30
PRIORITY_LOW = 40

# Seconds a claimed job is hidden from other workers while it runs
JOB_LEASE = 300


def add(priority, command, *args):
    """
    Queues command(*args) for background execution.
    Returns True if the job was stored. Never waits for the job itself.
    """
    from db import get_db

    db = get_db()
    try:
        db.execute("""
            INSERT INTO workerqueue (command, parameter, priority, retries, next_try, created)
            VALUES (?, ?, ?, 0, 0, ?)
        """, (command, json.dumps(list(args)), priority, time.time()))
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not queue {command}: {e}")
        return False

    worker.notify()
    return True


class BackgroundWorker:
    """Background worker that drains the job queue in a separate thread."""

    def __init__(self, app=None):
        self.app = app
        self.running = False
        self.thread = None
        self.commands = {}
        self._wakeup = threading.Event()

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize the worker with the Flask app and its built-in commands."""
        from utils.probe import update_contact_from_probe

        self.app = app
        self.register_command('GProbe', update_contact_from_probe)

    def register_command(self, name, func):
        self.commands[name] = func

    def notify(self):
        self._wakeup.set()

    def start(self):
        """Start the background worker thread."""
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(target=self._run_worker, daemon=True)
        self.thread.start()
        print("Background worker started")

    def stop(self):
        """Stop the background worker thread."""
        self.running = False
        self._wakeup.set()
        if self.thread:
            self.thread.join(timeout=5)
        print("Background worker stopped")

    def _run_worker(self):
        """Main worker loop - runs in background thread."""
        poll_interval = self.app.config.get('WORKER_POLL_INTERVAL', 30)

        while self.running:
            self._wakeup.wait(timeout=poll_interval)
            self._wakeup.clear()
            if not self.running:
                break
            try:
                with self.app.app_context():
                    self.run_pending()
            except Exception as e:
                print(f"Error in background worker: {e}")
                traceback.print_exc()
                time.sleep(60)  # On error, wait 1 minute before retrying

    def _claim(self, db, job_id, now):
        """Takes the lease on a job. Only one worker wins a given job."""
        cursor = db.cursor()
        cursor.execute("UPDATE workerqueue SET next_try = ? WHERE id = ? AND next_try <= ?",
                       (now + JOB_LEASE, job_id, now))
        db.commit()
        return cursor.rowcount == 1

    def _execute(self, db, job):
        func = self.commands.get(job['command'])
        if func is None:
            print(f"ERROR: Unknown worker command {job['command']}, dropping job {job['id']}")
            db.execute("DELETE FROM workerqueue WHERE id = ?", (job['id'],))
            db.commit()
            return False

        try:
            func(*json.loads(job['parameter'] or '[]'))
        except Exception as e:
            print(f"ERROR: Worker job {job['id']} ({job['command']}) failed: {e}")
            traceback.print_exc()
            retries = job['retries'] + 1
            max_retries = current_app.config.get('WORKER_MAX_RETRIES', 3)
            if retries > max_retries:
                print(f"ERROR: Giving up on job {job['id']} after {max_retries} retries")
                db.execute("DELETE FROM workerqueue WHERE id = ?", (job['id'],))
            else:
                # Back off a minute per failed attempt
                db.execute("UPDATE workerqueue SET retries = ?, next_try = ? WHERE id = ?",
                           (retries, time.time() + 60 * retries, job['id']))
            db.commit()
            return False

        db.execute("DELETE FROM workerqueue WHERE id = ?", (job['id'],))
        db.commit()
        return True

    def run_pending(self, limit=None):
        """
        Runs all due jobs, highest priority first. Must be called inside an
        app context. Returns the number of jobs that completed successfully.
        """
        from db import get_db

        db = get_db()
        now = time.time()
        query = "SELECT * FROM workerqueue WHERE next_try <= ? ORDER BY priority, id"
        params = (now,)
        if limit:
            query += " LIMIT ?"
            params = (now, limit)
        jobs = [dict(row) for row in db.execute(query, params).fetchall()]

        completed = 0
        for job in jobs:
            if not self._claim(db, job['id'], now):
                continue
            if self._execute(db, job):
                completed += 1
        return completed


# Global worker instance
worker = BackgroundWorker()
