"""Bootstrap utilities for provisioning search index templates."""

from __future__ import annotations

import json
import logging
from importlib import resources
from typing import Any, Dict, Optional

from hubsearch.domain.search import models
from hubsearch.domain.search.executor import IndexNaming
from hubsearch.domain.search.ports import QueryBackend

_LOG = logging.getLogger(__name__)


def _load_resource(path: str) -> Dict[str, Any]:
	package = resources.files(__package__).joinpath("resources").joinpath(path)
	with resources.as_file(package) as file_path:
		return json.loads(file_path.read_text())


def template_for(content_type: models.ContentType, naming: IndexNaming) -> Dict[str, Any]:
	payload = _load_resource(f"index_templates/{content_type.value}.json")
	payload["index_patterns"] = [naming.index_for(content_type)]
	return payload


class SearchBootstrapper:
	"""Install one index template per content type."""

	def __init__(self, backend: QueryBackend, *, naming: Optional[IndexNaming] = None) -> None:
		self._backend = backend
		self._naming = naming or IndexNaming()

	async def install_all(self) -> list[str]:
		installed: list[str] = []
		for content_type in models.ContentType:
			name = f"{self._naming.index_for(content_type)}-template"
			await self._backend.put_index_template(name, template_for(content_type, self._naming))
			_LOG.info("search.bootstrap.template", extra={"template": name})
			installed.append(name)
		return installed


__all__ = ["SearchBootstrapper", "template_for"]
