[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nvmedisc"
version = "0.1.0"
description = "NVMe over TCP discovery host: wire structures, scatter lists and a discovery client"
requires-python = ">=3.10"
dependencies = []
keywords = ["nvme", "nvme-of", "nvme-tcp", "discovery", "storage", "fabrics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nvmedisc"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
