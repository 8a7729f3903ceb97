#! /usr/bin/env python3
# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

from setuptools import setup


def get_long_desc():
    in_preamble = True
    lines = []

    with open("README.md", "rt", encoding="utf8") as f:
        for line in f:
            if in_preamble:
                if line.startswith("<!--pypi-begin-->"):
                    in_preamble = False
            else:
                if line.startswith("<!--pypi-end-->"):
                    break
                else:
                    lines.append(line)

    lines.append(
        """

For more information about DASCH and its data, please visit [the DASCH DR7
documentation].

[the DASCH DR7 documentation]: https://dasch.cfa.harvard.edu/dr7/
"""
    )
    return "".join(lines)


setup_args = dict(
    name="daschscience",  # cranko project-name
    version="0.1.0",  # cranko project-version
    description="DASCH science data services: cutouts, catalog and exposure queries",
    long_description=get_long_desc(),
    long_description_content_type="text/markdown",
    author="Peter Williams",
    url="https://github.com/pkgw/daschscience",
    packages=[
        "daschscience",
    ],
    license="MIT",
    include_package_data=True,
    install_requires=[
        "astropy>=6",
        "dataclasses-json>=0.6",
        "marshmallow>=3",
        "numpy>=1.20",
        "pytz>=2024",
        "requests>=2",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
)

if __name__ == "__main__":
    setup(**setup_args)
