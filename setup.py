#!/usr/bin/env python

import setuptools

setuptools.setup(
    name="marginalia",
    version="0.3.0",
    author="Chen Yang",
    author_email="healthonrails@gmail.com",
    description="Incremental PDF page rendering with anchored, note-backed annotations.",
    packages=setuptools.find_packages(include=["marginalia", "marginalia.*"]),
    package_data={"marginalia": ["configs/*.yaml"]},
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    install_requires=['PyYAML>=5.3',
                      'termcolor>=1.1.0',
                      'colorama>=0.4.4; platform_system=="Windows"',
                      'qtpy>=2.0',
                      'PyQt5>=5.15',
                      'PyMuPDF>=1.23',
                      ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    python_requires='>=3.9',
)
