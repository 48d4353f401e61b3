from datetime import datetime
from dumpkeeper import db


class EventLogEntry(db.Model):
    """Event log entry recorded by a dump run"""
    __tablename__ = 'event_log'

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    level = db.Column(db.String(20), nullable=False)  # DEBUG, INFO, WARNING, ERROR
    source = db.Column(db.String(80), nullable=False)
    message = db.Column(db.Text, nullable=False)

    def __repr__(self):
        return f'<EventLogEntry {self.level} source={self.source}>'
