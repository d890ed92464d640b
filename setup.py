from pathlib import Path
from setuptools import find_packages, setup


ROOT = Path(__file__).parent


def read_readme() -> str:
    readme = ROOT / "README.md"
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


setup(
    name="token-detection",
    version="0.1.0",
    description="Periodic detection of tokens held by an account but not yet tracked",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["token_detection", "token_detection.*"]),
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9",
        "pydantic>=2.5",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": ["token-detection=token_detection.__main__:main"],
    },
)
