from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class GameServer(db.Model):
    __tablename__ = 'game_servers'

    id = db.Column(db.String(32), primary_key=True)
    title = db.Column(db.String(63), nullable=False, default='')
    subdomain = db.Column(db.String(63), nullable=True)
    port = db.Column(db.Integer, unique=True, nullable=False, index=True)
    state = db.Column(db.String(20), nullable=False, default='stopped')
    can_be_deleted = db.Column(db.Boolean, nullable=False, default=True)

    # Lifecycle timestamps
    start_date = db.Column(db.DateTime, nullable=True)
    shutdown_date = db.Column(db.DateTime, nullable=True)
    deletion_date = db.Column(db.DateTime, nullable=True)

    # Backup of server files taken on the last successful stop
    archive_name = db.Column(db.String(100), nullable=True)
    archive_data = db.Column(db.LargeBinary, nullable=True)

    # Public DNS records created for the server
    cloudflare_cname_record_id = db.Column(db.String(64), nullable=True)
    cloudflare_srv_record_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def has_archive(self) -> bool:
        return self.archive_data is not None

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'subdomain': self.subdomain,
            'port': self.port,
            'state': self.state,
            'can_be_deleted': self.can_be_deleted,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'shutdown_date': self.shutdown_date.isoformat() if self.shutdown_date else None,
            'deletion_date': self.deletion_date.isoformat() if self.deletion_date else None,
            'archive_name': self.archive_name,
            'has_archive': self.has_archive,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
