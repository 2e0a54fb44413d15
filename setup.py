from setuptools import find_packages, setup

setup(
    name='euibridge',
    version='1.0.0',
    description='ElectricUI binary protocol engine: framing, target responder and host client',
    author='isantolin',
    author_email='',
    packages=find_packages(include=['euibridge', 'euibridge.*']),
    python_requires='>=3.12',
    install_requires=[
        'cobs',
        'construct',
        'msgspec',
        'transitions',
        'tenacity',
        'marshmallow',
        'uvloop',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'euibridge-target=euibridge.daemon:main',
            'euibridge-host=euibridge.tools.host:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
