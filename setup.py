#!/usr/bin/env python3

from setuptools import setup, find_packages

deps = [
	'pyserial==3.5',
	'pyserial-asyncio==0.6',
	'colorama',
	'colorlog',
	'PyYAML',
]

tests_require = [
	'pytest',
	'pytest-asyncio',
	'pytype',
	'parameterized',
]

setup(
	name="jumperless-emu",
	version="0.1.0",
	description="Emulator, protocol client and recording proxy for the Jumperless breadboard.",
	author="jumperless-emu contributors",
	license="LGPL3+",
	python_requires='>=3.9',
	install_requires=deps,
	tests_require=tests_require,
	extras_require={'test': tests_require},
	packages=find_packages(exclude=['tests', 'tests.*']),

	entry_points={
		'console_scripts': [
			'jumperless-emulator = jumperless.daemon.main:emulator_main',
			'jumperless-proxy = jumperless.daemon.main:proxy_main',
		]
	},

	classifiers=[

	],
)
