from functools import lru_cache

from compose_sites.config import get_settings
from compose_sites.database import Database, get_database
from compose_sites.services.audit import AuditService
from compose_sites.services.provision import ProvisionService
from compose_sites.services.site_store import SiteStore


def get_db() -> Database:
    return get_database(get_settings().sqlite_db_path)


@lru_cache
def get_site_store() -> SiteStore:
    return SiteStore(get_db())


@lru_cache
def get_audit_service() -> AuditService:
    return AuditService(get_settings(), get_db())


@lru_cache
def get_provision_service() -> ProvisionService:
    return ProvisionService(get_settings(), get_site_store(), get_audit_service())
