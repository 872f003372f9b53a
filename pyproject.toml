[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "focdrive"
version = "0.1.0"
description = "Field-oriented BLDC motor control against a simulated board: fast trig, SVM, current loop, encoder PLL and a cascaded position/velocity controller"
requires-python = ">=3.10"
dependencies = []
keywords = ["foc", "bldc", "motor-control", "svpwm", "trajectory", "pll", "encoder", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["focdrive"]

[tool.pytest.ini_options]
addopts = "-ra"
