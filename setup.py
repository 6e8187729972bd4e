from setuptools import find_packages, setup

package_name = 'mpc_path_follower'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    package_data={
        package_name: ['config/*.yaml'],
    },
    python_requires='>=3.8',
    install_requires=['setuptools', 'numpy', 'casadi>=3.6', 'PyYAML'],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=True,
    description='Receding-horizon MPC steering and throttle controller '
                'for polynomial path following',
    entry_points={
        'console_scripts': [
            'mpc_controller = mpc_path_follower.mpc_controller:main',
        ],
    },
)
