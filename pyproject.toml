[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "applifecycle"
version = "0.1.0"
description = "Reconcile Application resources into Deployment, Service and Ingress objects with status conditions"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "controller", "reconciler", "operator", "deployment", "ingress"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["applifecycle"]

[tool.pytest.ini_options]
addopts = "-ra"
