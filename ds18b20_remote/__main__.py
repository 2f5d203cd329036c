from ds18b20_remote.agent import main

if __name__ == "__main__":
    main()
