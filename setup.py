# Hybrid versioning: single project version read from the VERSION file
import os
import subprocess
from typing import List

from setuptools import setup, find_packages


def read_version():
    """Read project version from VERSION file.

    Falls back to '0.0.0' if file missing (should not happen in release).
    """
    try:
        here = os.path.dirname(__file__)
        with open(os.path.join(here, 'VERSION'), 'r', encoding='utf-8') as f:
            return f.read().strip()
    except OSError:
        return "0.0.0"


__version__ = read_version()
__project__ = "quire"


def get_contributors() -> List[str]:
    """Extract unique contributors from git history."""
    try:
        result = subprocess.run(
            ["git", "shortlog", "-sne", "HEAD"],
            capture_output=True, text=True, check=True
        )
        contributors = []
        for line in result.stdout.splitlines():
            # Format: commits\tName <email>
            parts = line.strip().split("\t", 1)
            if len(parts) == 2:
                contributors.append(parts[1])
        return contributors
    except (OSError, subprocess.CalledProcessError):
        return ["quire maintainers"]


__authors__ = get_contributors()
__author__ = ", ".join(__authors__)


def read(filename, parent=None):
    parent = (parent or __file__)
    try:
        with open(os.path.join(os.path.dirname(parent), filename)) as f:
            return f.read()
    except IOError:
        return ''


def parse_requirements(filename, parent=None):
    parent = (parent or __file__)
    filepath = os.path.join(os.path.dirname(parent), filename)
    content = read(filename, parent)

    for line_number, line in enumerate(content.splitlines(), 1):
        candidate = line.strip()
        if not candidate or candidate.startswith('#'):
            continue
        if candidate.startswith('-r'):
            for item in parse_requirements(candidate[2:].strip(), filepath):
                yield item
        else:
            yield candidate


# Use README.md as the long description
long_description = read('README.md')

setup(
    name=__project__,
    version=__version__,
    author=__author__,
    description="Notebook ingestion and retrieval service: extract, chunk, embed and answer from your sources.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    python_requires='>=3.10, <4',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    package_data={
        'quire': [
            'python-requirements.txt',
            'prompts/*.txt',
            'milvus/collection/config/*.json',
            'alembic/*.py',
            'alembic/versions/*.py',
        ],
    },
    install_requires=list(parse_requirements('src/quire/python-requirements.txt')),
    extras_require={
        # Testing dependencies pulled from tests/python-requirements.txt
        'test': list(parse_requirements('tests/python-requirements.txt')),
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Text Processing :: Indexing',
        'Environment :: Web Environment',
        'Operating System :: OS Independent',
    ],
)
