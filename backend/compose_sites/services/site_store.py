from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from compose_sites.database import Database, DeploymentScript, Site
from compose_sites.exceptions import SiteNotFoundError


logger = logging.getLogger(__name__)


class SiteStore:
    """Site records and their deployment scripts."""

    def __init__(self, db: Database):
        self.db = db

    def _get_session(self) -> Session:
        return self.db.get_session()

    def get(self, site_id: int) -> Site:
        session = self._get_session()
        try:
            site = session.get(Site, site_id)
            if site is None:
                raise SiteNotFoundError(f"Site {site_id} not found")
            return site
        finally:
            session.close()

    def create(self, site: Site) -> Site:
        session = self._get_session()
        try:
            session.add(site)
            session.commit()
            return site
        finally:
            session.close()

    def save(self, site: Site) -> Site:
        session = self._get_session()
        try:
            session.merge(site)
            session.commit()
            return site
        finally:
            session.close()

    def port_is_reserved(self, server_id: int, port: int, exclude_site_id: int | None = None) -> bool:
        session = self._get_session()
        try:
            query = session.query(Site.id).filter(Site.server_id == server_id, Site.port == port)
            if exclude_site_id is not None:
                query = query.filter(Site.id != exclude_site_id)
            return query.first() is not None
        finally:
            session.close()

    def json_update(self, site: Site, key: str, value: Any) -> None:
        """Set one type_data key from the stored row, leaving other keys as persisted."""
        session = self._get_session()
        try:
            row = session.get(Site, site.id)
            if row is None:
                raise SiteNotFoundError(f"Site {site.id} not found")
            data = dict(row.type_data or {})
            data[key] = value
            row.type_data = data
            session.commit()
        finally:
            session.close()

        local = dict(site.type_data or {})
        local[key] = value
        site.type_data = local

    def ensure_deployment_script(self, site: Site) -> DeploymentScript | None:
        if site.id is None:
            return None

        session = self._get_session()
        try:
            script = session.query(DeploymentScript).filter(DeploymentScript.site_id == site.id).first()
            if script is None:
                script = DeploymentScript(site_id=site.id, name="default", content="")
                session.add(script)
                session.commit()
            return script
        finally:
            session.close()

    def get_deployment_script(self, site_id: int) -> DeploymentScript | None:
        session = self._get_session()
        try:
            return session.query(DeploymentScript).filter(DeploymentScript.site_id == site_id).first()
        finally:
            session.close()

    def save_deployment_script(self, script: DeploymentScript) -> None:
        session = self._get_session()
        try:
            session.merge(script)
            session.commit()
        finally:
            session.close()

    def delete(self, site: Site) -> None:
        session = self._get_session()
        try:
            session.query(DeploymentScript).filter(DeploymentScript.site_id == site.id).delete()
            session.query(Site).filter(Site.id == site.id).delete()
            session.commit()
            logger.info("Deleted site record %s", site.id)
        finally:
            session.close()
