from setuptools import setup, find_packages

package_name = 'hand_stream'

setup(
    name=package_name,
    version='1.0.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.9',
    install_requires=[
        'websockets>=13.0',
        'numpy>=1.24',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23',
        ],
    },
    zip_safe=True,
    description='Resilient hand-tracking telemetry streamer over WebSocket',
    license='MIT',
    entry_points={
        'console_scripts': [
            'hand-stream = hand_stream.main:main',
        ],
    },
)
