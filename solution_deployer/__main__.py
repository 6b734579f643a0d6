from .deployer import main

main()
