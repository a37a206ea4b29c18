#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Render the kubelet CredentialProviderConfig descriptor from a Jinja2 template.
Генерация CredentialProviderConfig для kubelet из шаблона Jinja2.
"""

from pathlib import Path

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from utils.logger import log, log_block

PROJECT_ROOT = Path(__file__).resolve().parents[1]
TEMPLATE_DIR = PROJECT_ROOT / "data" / "templates"
TEMPLATE_NAME = "credential-provider-config.yaml.j2"

DESCRIPTOR_API_VERSION = "kubelet.config.k8s.io/v1"
DESCRIPTOR_KIND = "CredentialProviderConfig"


class DescriptorError(Exception):
    """Rendered descriptor is not a usable CredentialProviderConfig."""


def template_values(settings) -> dict:
    match_images = list(settings.match_images)
    registry = settings.registry_host
    if registry and registry not in match_images:
        match_images.append(registry)

    args = list(settings.args)
    if settings.mirror_source:
        if not registry:
            raise DescriptorError("mirror_source requires a registry")
        args.append(f"--registry-mirror={settings.mirror_source}:{registry}")

    return {
        "provider_name": settings.binary_name,
        "match_images": match_images,
        "cache_duration": settings.cache_duration,
        "args": args,
    }


def check_descriptor(text: str) -> dict:
    """
    Parse descriptor YAML and check the fields kubelet needs.
    Проверяет, что YAML разбирается и содержит нужные kubelet поля.
    """
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DescriptorError(f"descriptor is not valid YAML: {e}") from e
    if not isinstance(doc, dict):
        raise DescriptorError("descriptor must be a mapping")
    if doc.get("kind") != DESCRIPTOR_KIND or doc.get("apiVersion") != DESCRIPTOR_API_VERSION:
        raise DescriptorError(f"descriptor must be {DESCRIPTOR_API_VERSION} {DESCRIPTOR_KIND}")
    providers = doc.get("providers")
    if not isinstance(providers, list) or not providers:
        raise DescriptorError("descriptor has no providers")
    for provider in providers:
        if not isinstance(provider, dict) or not provider.get("name"):
            raise DescriptorError("provider without name")
        if not provider.get("matchImages"):
            raise DescriptorError(f"provider {provider['name']} has no matchImages")
        if not provider.get("defaultCacheDuration"):
            raise DescriptorError(f"provider {provider['name']} has no defaultCacheDuration")
    return doc


def render_descriptor(settings) -> str:
    env = Environment(loader=FileSystemLoader(str(TEMPLATE_DIR)), undefined=StrictUndefined)
    rendered = env.get_template(TEMPLATE_NAME).render(**template_values(settings))
    if not rendered.endswith("\n"):
        rendered += "\n"
    check_descriptor(rendered)
    return rendered


def write_descriptor(fs, settings) -> bool:
    """
    Write the descriptor only when it differs from what is on disk.
    Returns True when the file was (re)written.
    """
    rendered = render_descriptor(settings)
    target = Path(settings.config_path)

    if fs.exists(target) and fs.read_bytes(target) == rendered.encode():
        log(f"{target} is up to date", "ok")
        return False

    fs.write_atomic(target, rendered.encode(), mode=0o644)
    log(f"Descriptor written: {target}", "ok")
    log_block("Descriptor content:", rendered)
    return True
